# tests/unit/test_config_loader.py

from __future__ import annotations
import sys
from pathlib import Path
import pytest
from textwrap import dedent

# Make "src" importable
sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src"))

from parley.config_loader import ConfigError, configured_api_key, load_config, provider_section  # type: ignore


def write_yaml(p: Path, text: str) -> Path:
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(dedent(text).lstrip("\n").rstrip() + "\n", encoding="utf-8")
    return p


def test_load_config_ok(tmp_path: Path):
    cfg = write_yaml(
        tmp_path / "config" / "default.yaml",
        """
        provider: DeepSeek
        model: deepseek-chat
        runtime: { stream: true, max_turns: 10 }
        providers:
          DEEPSEEK: { apiKey: sk-cfg, timeout: 30 }
          openai: { api_key: sk-oa }
          echo:
        settings: { dir: state }
        """,
    )
    data = load_config(cfg)
    assert data["provider"] == "deepseek"   # normalised
    assert provider_section(data, "deepseek")["timeout"] == 30
    assert provider_section(data, "echo") == {}
    assert configured_api_key(data, "deepseek") == "sk-cfg"
    assert configured_api_key(data, "openai") == "sk-oa"
    assert configured_api_key(data, "missing") is None
    # loader leaves paths as provided (bootstrap resolves them)
    assert data["settings"]["dir"] == "state"


def test_load_config_missing_key(tmp_path: Path):
    cfg = write_yaml(
        tmp_path / "config" / "default.yaml",
        """
        model: deepseek-chat         # missing provider
        runtime: { stream: true }
        """,
    )
    with pytest.raises(ConfigError):
        load_config(cfg)


@pytest.mark.parametrize("runtime", [
    '{ stream: "yes" }',
    "{ stream: true, max_turns: many }",
    "{ stream: true, max_retries: true }",
])
def test_load_config_type_error(tmp_path: Path, runtime: str):
    cfg = write_yaml(
        tmp_path / "config" / "default.yaml",
        f"""
        provider: openai
        model: gpt-4o-mini
        runtime: {runtime}
        """,
    )
    with pytest.raises(ConfigError):
        load_config(cfg)


def test_load_config_missing_file(tmp_path: Path):
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "nope.yaml")


def test_providers_must_be_mappings(tmp_path: Path):
    cfg = write_yaml(
        tmp_path / "c.yaml",
        """
        provider: openai
        model: gpt-4o-mini
        runtime: { stream: false }
        providers: { openai: [1, 2] }
        """,
    )
    with pytest.raises(ConfigError):
        load_config(cfg)
