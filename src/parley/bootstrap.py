from __future__ import annotations
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional
from dotenv import load_dotenv

from .config_loader import load_config, provider_section, configured_api_key
from .core.auth import AuthFlowController, AuthMethod
from .core.chat import ChatSession
from .core.content_generator import ContentGenerator
from .core.ports import CredentialCheck, ProviderConfig
from .providers.chat_format import require_api_key
from .resilience.resilient_provider import ResiliencePolicy
from .secrets.credentials import CachedCredentialStore
from .secrets.sources import SecretsResolver
from .settings import LoadedSettings
from .system_prompt import build_system_prompt, load_user_memory

logger = logging.getLogger(__name__)

DEFAULT_MODELS = {"openai": "gpt-4o-mini", "deepseek": "deepseek-chat", "echo": "echo-lorem"}
PROVIDER_LABELS = {"openai": "OpenAI", "deepseek": "DeepSeek", "echo": "Echo"}


class SessionAuthenticator:
    """
    The sign-in primitive behind AuthFlowController.
    refresh_auth(method) resolves the method's credential, builds the content
    generator for it and (re)binds the chat session, keeping any history.
    Raises MissingCredential when no credential can be found.
    """

    def __init__(
        self,
        cfg: Dict[str, Any],
        resolver: SecretsResolver,
        credentials: CachedCredentialStore,
        system_prompt: str,
        *,
        retry_policy: Optional[ResiliencePolicy] = None,
    ):
        self.cfg = cfg
        self.resolver = resolver
        self.credentials = credentials
        self.system_prompt = system_prompt
        self.retry_policy = retry_policy
        self.generator: Optional[ContentGenerator] = None
        self.session: Optional[ChatSession] = None

    def _model_for(self, provider_id: str) -> str:
        if self.cfg.get("provider") == provider_id and self.cfg.get("model"):
            return self.cfg["model"]
        return provider_section(self.cfg, provider_id).get("model") or DEFAULT_MODELS.get(provider_id, "")

    def provider_config(self, method: AuthMethod) -> ProviderConfig:
        pid = method.provider_id
        model = self._model_for(pid)
        prompt = self.session.system_prompt if self.session else self.system_prompt

        if method is AuthMethod.USE_LOCAL:
            return ProviderConfig(pid, model, None, prompt)

        if method is AuthMethod.LOGIN_WITH_OAUTH:
            cached = self.credentials.path.exists()
            token = self.credentials.get_active_credential()
            checks = (CredentialCheck(f"cached credential {self.credentials.path}", cached),)
            return ProviderConfig(pid, model, token, prompt, checks + tuple(self.credentials.last_checks))

        resolved = self.resolver.lookup(pid)
        cfg_key = configured_api_key(self.cfg, pid)
        checks = resolved.checks + (CredentialCheck(f"config providers.{pid}.apiKey", bool(cfg_key)),)
        return ProviderConfig(pid, model, resolved.value or cfg_key, prompt, checks)

    def refresh_auth(self, method: AuthMethod) -> None:
        config = self.provider_config(method)
        if method is not AuthMethod.USE_LOCAL:
            require_api_key(config, PROVIDER_LABELS.get(config.provider_id, config.provider_id))

        generator = ContentGenerator.create(
            config, provider_section(self.cfg, config.provider_id), retry_policy=self.retry_policy,
        )
        history = self.session.get_history() if self.session else []
        previous, self.generator = self.generator, generator
        if previous is not None:
            previous.close()
        self.session = ChatSession(generator, config, history=history)
        logger.info("Authenticated via %s (provider=%s, model=%s)",
                    method.value, config.provider_id, generator.model_id)


def _resolve_dir(raw: Optional[str], base: Path, default: Path) -> Path:
    if not raw:
        return default
    p = Path(raw).expanduser()
    return p if p.is_absolute() else (base / p).resolve()


def build_app(config_path: Path, repo_root: Optional[Path] = None, *, cwd: Optional[Path] = None) -> Dict[str, Any]:
    """
    Composition root: load YAML + settings, wire secrets, the auth primitive
    and the auth flow controller. The chat session exists once sign-in succeeds.
    """
    load_dotenv()
    cfg = load_config(config_path)
    config_dir = config_path.resolve().parent
    repo_root = repo_root or Path(__file__).resolve().parents[2]
    cwd = cwd or Path.cwd()

    # ----- Settings / credential cache -----
    settings_cfg = cfg.get("settings") or {}
    user_dir = _resolve_dir(settings_cfg.get("dir"), config_dir, Path.home() / ".parley")
    workspace_dir = _resolve_dir(settings_cfg.get("workspace_dir"), config_dir, cwd / ".parley")
    settings = LoadedSettings(user_dir, workspace_dir)

    secrets_cfg = cfg.get("secrets") or {}
    resolver = SecretsResolver(method=secrets_cfg.get("method", "env"), mapping=secrets_cfg.get("mapping", {}))
    credentials = CachedCredentialStore(user_dir, token_source=lambda: resolver.lookup("oauth", "token"))

    # ----- System prompt -----
    memory_dirs: List[Path] = [user_dir, cwd]
    system_prompt = build_system_prompt(load_user_memory(memory_dirs))

    # ----- Auth -----
    runtime = cfg.get("runtime") or {}
    max_retries = int(runtime.get("max_retries") or 0)
    retry_policy = ResiliencePolicy(max_retries=max_retries) if max_retries > 0 else None
    authenticator = SessionAuthenticator(cfg, resolver, credentials, system_prompt, retry_policy=retry_policy)
    auth = AuthFlowController(settings, authenticator, credentials)

    return {
        "cfg": cfg,
        "paths": {"config_dir": config_dir, "repo_root": repo_root, "settings_dir": user_dir,
                  "memory_dirs": memory_dirs},
        "settings": settings,
        "credentials": credentials,
        "authenticator": authenticator,
        "auth": auth,
    }
