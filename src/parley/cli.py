from __future__ import annotations
import logging
import signal
from importlib.metadata import version as pkg_version, PackageNotFoundError
from pathlib import Path
from typing import Any, Dict, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape

from .bootstrap import build_app
from .config_loader import ConfigError
from .core.auth import AuthFlowController, AuthMethod
from .core.cancel import CancellationToken
from .core.chat import ChatSession
from .core.errors import AuthRejected, ProviderError, RequestCancelled, TurnBudgetExceeded
from .core.events import ContentEvent
from .core.messages import UsageMetadata
from .settings import SettingScope
from .system_prompt import build_system_prompt, load_user_memory
from .ui.banner import UIConfigError, footer_text, format_model_name, render_banner

app = typer.Typer(add_completion=False)
logger = logging.getLogger(__name__)

HELP_TEXT = (
    "Commands: /help, /auth, /model, /history, /usage, /tokens, /memory, /clear, /exit, /quit\n"
    "Ctrl+C while waiting for a reply cancels it."
)


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(show_path=False)],
        force=True,
    )


def _default_method(provider_id: str) -> AuthMethod:
    for method in (AuthMethod.USE_OPENAI_KEY, AuthMethod.USE_DEEPSEEK, AuthMethod.USE_LOCAL):
        if method.provider_id == provider_id:
            return method
    return AuthMethod.USE_LOCAL


def _auth_dialog(console: Console, auth: AuthFlowController, default: AuthMethod) -> bool:
    """Keep asking until sign-in succeeds or the user closes the dialog."""
    methods = list(AuthMethod)
    while auth.state.dialog_open:
        if auth.state.error:
            console.print(f"[red]{escape(auth.state.error)}[/red]", soft_wrap=True)
        console.print("[bold]How would you like to authenticate?[/bold]")
        for i, m in enumerate(methods, 1):
            console.print(f"  {i}. {m.label} [dim]({m.value})[/dim]")
        try:
            choice = typer.prompt("Auth method (number or name, q to cancel)", default=default.value).strip()
        except (EOFError, typer.Abort):
            choice = "q"
        if choice.lower() in ("q", "quit"):
            auth.select_auth_method(None, SettingScope.USER)
            break
        if choice.isdigit() and 1 <= int(choice) <= len(methods):
            method = methods[int(choice) - 1]
        else:
            try:
                method = AuthMethod.parse(choice)
            except ValueError as e:
                console.print(f"[yellow]{escape(str(e))}[/yellow]")
                continue
        if auth.select_auth_method(method, SettingScope.USER):
            console.print(f"[green]Signed in:[/green] {method.label}")
    return auth.state.authenticated


def _add_usage(total: UsageMetadata, usage: UsageMetadata) -> UsageMetadata:
    return UsageMetadata(
        total.prompt_tokens + usage.prompt_tokens,
        total.candidate_tokens + usage.candidate_tokens,
        total.total_tokens + usage.total_tokens,
    )


class _Repl:
    def __init__(self, console: Console, ctx: Dict[str, Any]):
        self.console = console
        self.ctx = ctx
        self.cfg = ctx["cfg"]
        self.auth: AuthFlowController = ctx["auth"]
        self.authenticator = ctx["authenticator"]
        runtime = self.cfg.get("runtime") or {}
        self.use_stream = bool(runtime.get("stream", False))
        self.max_turns = int(runtime.get("max_turns") or ChatSession.MAX_TURNS)
        self.last_usage = UsageMetadata()
        self.total_usage = UsageMetadata()

    @property
    def session(self) -> ChatSession:
        return self.authenticator.session

    def reauthenticate(self) -> bool:
        self.auth.open_auth_dialog()
        return _auth_dialog(self.console, self.auth, _default_method(self.cfg["provider"]))

    # ----- commands -----

    def command(self, line: str) -> bool:
        """Run a slash command. Returns False when the loop should stop."""
        cmd = line.split()[0].lower()
        c = self.console
        if cmd in ("/exit", "/quit"):
            c.print("Bye.")
            return False
        if cmd == "/help":
            c.print(HELP_TEXT)
        elif cmd == "/auth":
            self.reauthenticate()
        elif cmd == "/model":
            g = self.session.generator
            c.print(f"{g.provider_id} | {format_model_name(g.model_id, g.provider_id)} "
                    f"({g.model_id}, streaming={g.streaming.value})")
        elif cmd == "/history":
            history = self.session.get_history()
            if not history:
                c.print("[dim](empty)[/dim]")
            for turn in history:
                c.print(f"[bold]{turn.role.value}[/bold]: {escape(turn.text)}")
        elif cmd == "/usage":
            u, t = self.last_usage, self.total_usage
            c.print(f"last: in {u.prompt_tokens} / out {u.candidate_tokens} / total {u.total_tokens}")
            c.print(f"session: in {t.prompt_tokens} / out {t.candidate_tokens} / total {t.total_tokens}")
        elif cmd == "/tokens":
            count = self.session.count_tokens()
            c.print(f"~{count.total_tokens} tokens in context" + (" (estimate)" if count.estimated else ""))
        elif cmd == "/memory":
            prompt = build_system_prompt(load_user_memory(self.ctx["paths"]["memory_dirs"]))
            self.authenticator.system_prompt = prompt
            self.session.update_system_prompt(prompt)
            c.print("Memory reloaded into the system prompt.")
        elif cmd == "/clear":
            self.session.reset()
            c.print("History cleared.")
        else:
            c.print(f"[yellow]Unknown command {escape(cmd)}[/yellow]. {HELP_TEXT}")
        return True

    # ----- turns -----

    def _send(self, line: str, token: CancellationToken) -> Optional[UsageMetadata]:
        if not self.use_stream:
            turn = self.session.send_message(line, signal=token, max_turns=self.max_turns)
            self.console.print(turn.text, markup=False, highlight=False, soft_wrap=True)
            return turn.usage

        stream = self.session.send_message_stream(line, signal=token, max_turns=self.max_turns)
        for event in stream:
            if isinstance(event, ContentEvent):
                self.console.print(event.text, end="", markup=False, highlight=False, soft_wrap=True)
        self.console.print()
        if stream.cancelled:
            self.console.print("[yellow](request cancelled)[/yellow]")
            return None
        if stream.budget_exceeded:
            self.console.print(f"[yellow]{escape(stream.error.message)}[/yellow]")
        return stream.usage

    def turn(self, line: str) -> None:
        token = CancellationToken()
        previous = signal.signal(signal.SIGINT, lambda *_: token.cancel())
        try:
            usage = self._send(line, token)
        except RequestCancelled:
            self.console.print("\n[yellow](request cancelled)[/yellow]")
            return
        except AuthRejected as e:
            self.console.print(f"\n[red]{escape(str(e))}[/red]", soft_wrap=True)
            self.auth.handle_auth_rejected(str(e))
            self.reauthenticate()
            return
        except TurnBudgetExceeded as e:
            self.console.print(f"[yellow]{escape(str(e))}[/yellow]")
            return
        except ProviderError as e:
            logger.debug("Turn failed", exc_info=True)
            self.console.print(f"\n[red]Error ({e.kind}): {escape(str(e))}[/red]", soft_wrap=True)
            return
        finally:
            signal.signal(signal.SIGINT, previous)

        if usage is None:
            return
        self.last_usage = usage
        self.total_usage = _add_usage(self.total_usage, usage)
        g = self.session.generator
        self.console.print(footer_text(g.model_id, g.provider_id, usage, len(self.session.get_history())))

    def run(self) -> None:
        self.console.print("Parley chat. Type /help for commands.")
        while True:
            try:
                line = input("parley> ").strip()
            except (EOFError, KeyboardInterrupt):
                self.console.print("\nBye.")
                return
            if not line:
                continue
            if line.startswith("/"):
                if not self.command(line):
                    return
                continue
            self.turn(line)


@app.callback(invoke_without_command=True)
def chat(
    config: Path = typer.Option(Path("config/default.yaml"), "--config", "-c", help="YAML config file"),
    auth: Optional[str] = typer.Option(None, "--auth", help="Sign in with this method: " + ", ".join(m.value for m in AuthMethod)),
    debug: bool = typer.Option(False, "--debug", help="Verbose logging"),
):
    console = Console()
    try:
        ctx = build_app(config)
    except (FileNotFoundError, ConfigError) as e:
        console.print(f"[red]{escape(str(e))}[/red]", soft_wrap=True)
        raise typer.Exit(code=2)

    cfg = ctx["cfg"]
    _setup_logging("DEBUG" if debug else str((cfg.get("logging") or {}).get("level", "WARNING")))

    try:
        app_ver = f"v{pkg_version('parley')}"
    except PackageNotFoundError:
        app_ver = None
    try:
        render_banner(console, cfg.get("ui"), cfg["provider"], app_ver)
    except UIConfigError as e:
        console.print(f"[yellow]ui: {escape(str(e))}[/yellow]")

    controller: AuthFlowController = ctx["auth"]
    if auth:
        try:
            controller.select_auth_method(auth, SettingScope.USER)
        except ValueError as e:
            console.print(f"[red]{escape(str(e))}[/red]", soft_wrap=True)
            raise typer.Exit(code=2)
    else:
        controller.maybe_auto_authenticate()

    if not controller.state.authenticated:
        if not _auth_dialog(console, controller, _default_method(cfg["provider"])):
            console.print("Not signed in. Bye.")
            return

    _Repl(console, ctx).run()
