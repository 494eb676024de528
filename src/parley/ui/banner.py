from __future__ import annotations
from typing import Any, Dict, List, Optional

from pyfiglet import figlet_format
from rich.align import Align
from rich.console import Console
from rich.panel import Panel
from rich.text import Text

from ..core.messages import UsageMetadata


class UIConfigError(ValueError):
    pass


DEFAULT_FONTS: List[Dict[str, Any]] = [
    {"max_width": 60, "name": "small"},
    {"max_width": 100000, "name": "standard"},
]

_MODEL_NAMES = {
    "deepseek-chat": "DeepSeek Chat",
    "deepseek-reasoner": "DeepSeek Reasoner",
}


def _pick_font(fonts_cfg, width: int) -> str:
    # first rule where width <= max_width
    for rule in fonts_cfg:
        if width <= int(rule["max_width"]):
            return str(rule["name"])
    raise UIConfigError("No matching font rule for console width")


def banner_settings(ui_cfg: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    b = dict((ui_cfg or {}).get("banner") or {})
    b.setdefault("enabled", True)
    b.setdefault("border_style", "cyan")
    fonts = b.setdefault("fonts", DEFAULT_FONTS)
    if not isinstance(fonts, list) or not all(isinstance(i, dict) and "max_width" in i and "name" in i for i in fonts):
        raise UIConfigError("ui.banner.fonts must be a list of {max_width:int, name:str}")
    return b


def banner_title(provider_id: str, configured: Optional[str] = None) -> str:
    if configured:
        return configured
    return "DeepSeek" if provider_id == "deepseek" else "Parley"


def format_model_name(model: str, provider_id: str = "") -> str:
    """Human-readable model label for the footer, e.g. 'deepseek-chat' -> 'DeepSeek Chat'."""
    if model in _MODEL_NAMES:
        return _MODEL_NAMES[model]
    if provider_id == "deepseek" and model.startswith("deepseek-"):
        rest = model[len("deepseek-"):].replace("-", " ").title()
        return f"DeepSeek {rest}"
    return model


def render_banner(console: Console, ui_cfg: Optional[Dict[str, Any]], provider_id: str,
                  app_version: Optional[str] = None) -> None:
    b = banner_settings(ui_cfg)
    if not b["enabled"]:
        return
    font = _pick_font(b["fonts"], console.width)
    art = figlet_format(banner_title(provider_id, b.get("title")), font=font)
    art = "\n".join(line.rstrip() for line in art.splitlines())
    console.print(Panel(
        Align.center(art),
        title=app_version,
        subtitle=b.get("subtitle") or None,
        border_style=b["border_style"],
        expand=True,
    ))


def footer_text(model: str, provider_id: str, usage: UsageMetadata, history_len: int) -> Text:
    text = Text()
    text.append(format_model_name(model, provider_id), style="bold")
    text.append(f"  |  {history_len} turn(s)", style="dim")
    text.append(
        f"  |  tokens in {usage.prompt_tokens} / out {usage.candidate_tokens} / total {usage.total_tokens}",
        style="dim",
    )
    return text
