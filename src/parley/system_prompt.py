from __future__ import annotations
from pathlib import Path
from typing import Iterable, List, Optional

DEFAULT_SYSTEM_PROMPT = "You're a helpful AI."
MEMORY_FILE = "PARLEY.md"


def base_prompt() -> str:
    sys_prompt_path = Path(__file__).resolve().parent / "prompts" / "system.txt"
    if sys_prompt_path.exists():
        return sys_prompt_path.read_text(encoding="utf-8").strip()
    return DEFAULT_SYSTEM_PROMPT


def load_user_memory(dirs: Iterable[Path]) -> str:
    """Concatenate PARLEY.md files from the given directories, in order."""
    chunks: List[str] = []
    for d in dirs:
        p = Path(d) / MEMORY_FILE
        if p.is_file():
            text = p.read_text(encoding="utf-8").strip()
            if text:
                chunks.append(f"--- Context from: {p} ---\n{text}")
    return "\n\n".join(chunks)


def build_system_prompt(user_memory: Optional[str] = None) -> str:
    prompt = base_prompt()
    if user_memory and user_memory.strip():
        return f"{prompt}\n\n---\n\n{user_memory.strip()}"
    return prompt
