"""
interfaces/cli.py — Parley CLI Interface

Interactive REPL for a single conversation view.
Uses rich for terminal rendering.

Features:
  - Plain typing submits a prompt; "yes"/"no" answer a pending confirmation
  - Inline confirmation panel whenever an action is held back
  - /confirm, /cancel, /status, /history [N], /clear, /help
  - Recent exchanges cached on disk and restored on the next run
  - Graceful Ctrl+C / Ctrl+D handling

Content trust: user text and anything echoing it is printed literally;
only agent-originated replies are rendered as Markdown.

Usage:
    python main.py --interface cli
    python main.py --interface cli --log-level DEBUG
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Optional

from rich import box
from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from agent.classifier import truncate_text
from agent.orchestrator import ConfirmationOrchestrator
from agent.response_synthesizer import AgentResponse, ResponseKind
from agent.session import ConversationView
from brain.agent_client import BaseAgentClient
from config.settings import Settings
from exceptions import PromptValidationError
from kernel.bootstrap import build_stack
from memory.exchange_log import Exchange
from memory.history_cache import HistoryCache
from observability.logger import get_logger

log = get_logger(__name__)

CLI_USER_ID = "cli_user"
HISTORY_PROMPT_CHARS = 50

_HELP_TEXT = """
## Parley Commands

| Command | Description |
|---|---|
| *(any text)* | Send a prompt to the agent |
| `/confirm` | Carry out the action awaiting confirmation |
| `/cancel` | Drop the action awaiting confirmation |
| `/status` | Show conversation state and agent session |
| `/history` | List recent exchanges |
| `/history N` | Show exchange N in full |
| `/clear` | Clear local history |
| `/help` | Show this help |
| `exit` | Quit Parley |

While an action awaits confirmation, typing **yes** or **no** works too.
Anything else drops the pending action and is sent as a new prompt.
"""

_STATE_COLOURS = {
    "idle": "\033[36m",
    "awaiting_confirmation": "\033[33m",
}


class CLIInterface:
    """
    Interactive REPL for Parley.

    Wires together: Settings → HistoryCache → build_stack() → ConversationView
    then runs a Rich-powered async input loop.
    """

    def __init__(
        self,
        settings: Settings,
        client: Optional[BaseAgentClient] = None,
        console: Optional[Console] = None,
    ):
        self.settings = settings
        self.console = console or Console()
        self._client = client
        self._orchestrator: Optional[ConfirmationOrchestrator] = None
        self._view: Optional[ConversationView] = None
        self._cache: Optional[HistoryCache] = None
        self._shutdown = asyncio.Event()

    # ── Startup ───────────────────────────────────────────────────────────────

    async def start(self) -> None:
        """Initialize all components then run the REPL loop."""
        self._init_components()
        self._print_banner()
        try:
            await self._repl_loop()
        finally:
            self._cleanup()

    def _init_components(self) -> None:
        """Wire up the conversation stack."""
        mem = self.settings.memory
        self._cache = HistoryCache(mem.history_cache_path, max_size=mem.history_cache_size)
        restored = self._cache.load()

        stack = build_stack(self.settings, client=self._client, on_exchange=self._cache.add)
        self._orchestrator = stack.orchestrator
        self._view = ConversationView.create(
            user_id=CLI_USER_ID,
            history_size=self.settings.conversation.view_history_size,
            history=restored,
        )
        log.info("cli.initialized", view_id=self._view.id, restored=len(restored),
                 policy=stack.policy.name)

    # ── Banner & Help ─────────────────────────────────────────────────────────

    def _print_banner(self) -> None:
        ready = self.settings.agent_service_ready
        service = (
            "[green]agent service configured[/]" if ready
            else "[yellow]agent service not configured — fallback replies only[/]"
        )
        self.console.print(
            Panel(
                f"[bold cyan]Parley[/]  ·  {service}  ·  "
                f"Confirmation: [cyan]{self._orchestrator.policy.name}[/]\n\n"
                f"Type your message or [bold]/help[/] for commands. "
                f"[bold]exit[/] or Ctrl+D to quit.",
                border_style="cyan",
                padding=(0, 2),
            )
        )

    def _print_help(self) -> None:
        self.console.print(Markdown(_HELP_TEXT))

    # ── REPL Loop ─────────────────────────────────────────────────────────────

    async def _repl_loop(self) -> None:
        """Main async input loop."""
        loop = asyncio.get_running_loop()

        while not self._shutdown.is_set():
            try:
                user_input = await loop.run_in_executor(None, input, self._build_prompt())
            except (EOFError, KeyboardInterrupt):
                self.console.print("\n[dim]Goodbye.[/]")
                break

            user_input = user_input.strip()
            if not user_input:
                continue

            if user_input.lower() in ("exit", "quit"):
                self.console.print("[dim]Goodbye.[/]")
                break

            await self._dispatch(user_input)

    def _build_prompt(self) -> str:
        """Parley[state][turns]>"""
        state = self._view.state.value
        colour = _STATE_COLOURS.get(state, "")
        reset = "\033[0m"
        label = "confirm?" if self._view.is_awaiting else "idle"
        return f"{colour}Parley[{label}][{self._view.turn_count}]{reset}> "

    # ── Command Dispatch ──────────────────────────────────────────────────────

    async def _dispatch(self, raw: str) -> None:
        """Route input to the correct handler."""
        if raw.startswith("/"):
            parts = raw.split(maxsplit=1)
            cmd = parts[0].lower()
            arg = parts[1].strip() if len(parts) > 1 else ""

            handlers = {
                "/help":    lambda _: self._print_help(),
                "/confirm": lambda _: self._cmd_confirm(),
                "/cancel":  lambda _: self._cmd_cancel(),
                "/status":  lambda _: self._cmd_status(),
                "/history": self._cmd_history,
                "/clear":   lambda _: self._cmd_clear(),
            }

            handler = handlers.get(cmd)
            if handler:
                result = handler(arg)
                if asyncio.iscoroutine(result):
                    await result
            else:
                self.console.print(
                    f"[yellow]Unknown command: {cmd}. Type /help for commands.[/]",
                )
        else:
            await self._cmd_ask(raw)

    # ── Commands ──────────────────────────────────────────────────────────────

    async def _cmd_ask(self, message: str) -> None:
        try:
            with self.console.status("[dim]Thinking...[/]"):
                response = await self._orchestrator.submit(self._view, message)
        except PromptValidationError as e:
            self.console.print(Text(f"⚠ {e}", style="yellow"))
            return
        self._render_response(response)

    async def _cmd_confirm(self) -> None:
        with self.console.status("[dim]Carrying out the confirmed action...[/]"):
            response = await self._orchestrator.confirm(self._view)
        self._render_response(response)

    def _cmd_cancel(self) -> None:
        self._render_response(self._orchestrator.cancel(self._view))

    async def _cmd_status(self) -> None:
        self._render_response(await self._orchestrator.status(self._view))

    def _cmd_history(self, arg: str) -> None:
        history = self._view.history
        if not history:
            self.console.print("[dim]No history yet.[/]")
            return

        if arg:
            if not arg.isdigit() or not 1 <= int(arg) <= len(history):
                self.console.print(f"[yellow]Pick an entry between 1 and {len(history)}.[/]")
                return
            self._show_exchange(history[int(arg) - 1])
            return

        table = Table(box=box.SIMPLE, show_header=True, header_style="bold cyan")
        table.add_column("#", justify="right", style="dim")
        table.add_column("When", style="dim")
        table.add_column("Prompt")
        for i, exchange in enumerate(history, start=1):
            table.add_row(
                str(i),
                _local_time(exchange.timestamp),
                Text(truncate_text(exchange.prompt, HISTORY_PROMPT_CHARS)),
            )
        self.console.print(table)
        self.console.print("[dim]/history N shows an entry in full.[/]")

    def _show_exchange(self, exchange: Exchange) -> None:
        self.console.print(
            Panel(Text(exchange.prompt), title=f"[dim]{_local_time(exchange.timestamp)}[/]",
                  border_style="dim", padding=(0, 2))
        )
        self.console.print(Panel(Markdown(exchange.result), border_style="cyan", padding=(0, 2)))

    def _cmd_clear(self) -> None:
        self._view.clear_history()
        self._cache.clear()
        self.console.print("[dim]History cleared.[/]")

    # ── Rendering ─────────────────────────────────────────────────────────────

    def _body(self, response: AgentResponse):
        """Markdown for trusted agent text, literal Text for everything else."""
        if response.trusted:
            return Markdown(response.text)
        return Text(response.text)

    def _render_response(self, response: AgentResponse) -> None:
        text = response.text.strip() if response.text else ""
        if not text:
            return
        kind = response.kind

        if kind == ResponseKind.TEXT:
            title = "[yellow]offline reply[/]" if response.used_fallback else None
            self.console.print(Panel(self._body(response), title=title,
                                     border_style="cyan", padding=(0, 2)))

        elif kind == ResponseKind.CONFIRMATION:
            self.console.print(
                Panel(
                    self._body(response),
                    title="[bold yellow]⚠ Confirmation Required[/]",
                    border_style="yellow",
                    padding=(0, 2),
                )
            )
            self.console.print("  [dim]Reply [bold]yes[/bold] or /confirm to go ahead, "
                               "[bold]no[/bold] or /cancel to drop it.[/]")

        elif kind == ResponseKind.CANCELLED:
            self.console.print(Text(f"✗ {text}", style="red"))

        elif kind == ResponseKind.ERROR:
            self.console.print(Panel(Text(text), title="[red]Error[/]",
                                     border_style="red", padding=(0, 1)))

        elif kind == ResponseKind.STATUS:
            self.console.print(Panel(Text(text), title="Status",
                                     border_style="dim", padding=(0, 2)))

        else:
            self.console.print(Text(text, style="dim"))

    # ── Cleanup ───────────────────────────────────────────────────────────────

    def _cleanup(self) -> None:
        log.info("cli.shutdown", view_id=self._view.id if self._view else None,
                 turns=self._view.turn_count if self._view else 0)


def _local_time(timestamp: str) -> str:
    """ISO-8601 (UTC) → local 'YYYY-MM-DD HH:MM'; unparseable stamps pass through."""
    try:
        return datetime.fromisoformat(timestamp).astimezone().strftime("%Y-%m-%d %H:%M")
    except ValueError:
        return timestamp


# ── Public entry point ────────────────────────────────────────────────────────


async def run_cli(settings: Settings, log) -> None:
    """
    Entry point called from main.py.

    Args:
        settings:  Loaded Parley settings.
        log:       Application-level logger.
    """
    cli = CLIInterface(settings=settings)

    log.info("cli.starting")
    try:
        await cli.start()
    except KeyboardInterrupt:
        log.info("cli.interrupted")
