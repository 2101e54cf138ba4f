"""
main.py — Parley Entry Point

Usage:
    python main.py                          # CLI interface, default settings
    python main.py --interface cli          # CLI REPL (explicit)
    python main.py --interface server       # HTTP API + WebSocket gateway
    python main.py --log-level DEBUG        # Verbose logging
    python main.py --config path/to/config.yaml
"""

from __future__ import annotations

# ─────────────────────────────────────────────────────────────────────────────
# Load environment variables before any settings are read
# ─────────────────────────────────────────────────────────────────────────────

from pathlib import Path

from dotenv import load_dotenv

ENV_PATH = Path(__file__).parent / ".env"
load_dotenv(dotenv_path=ENV_PATH)

# ─────────────────────────────────────────────────────────────────────────────
import argparse
import asyncio
import sys


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="parley",
        description="Parley — conversational front end for a hosted planning agent",
    )
    parser.add_argument(
        "--interface",
        choices=["cli", "server"],
        default="cli",
        help="Interface to start (default: cli). server = HTTP API + WebSocket gateway",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to config.yaml (default: $PARLEY_CONFIG or config/config.yaml)",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=None,
        help="Override log level from config",
    )
    return parser.parse_args(argv)


def bootstrap(args: argparse.Namespace):
    """
    Load config, validate it fully, and set up logging.
    Returns (settings, log) ready for use.

    Exits with code 1 (after printing a clear message) if:
      - config.yaml has invalid values (Pydantic ValidationError)
      - cross-field problems are found (ConfigError from validate_all())
    """
    from pydantic import ValidationError

    from config.settings import ConfigError, load_settings
    from observability.logger import get_logger, setup_logging

    # -- Load and parse -------------------------------------------------------
    try:
        settings = load_settings(args.config)
    except ValidationError as exc:
        problems = "\n".join(
            f"  • {'.'.join(str(p) for p in e['loc']) or '?'}: {e['msg']}"
            for e in exc.errors()
        )
        print(
            f"\n❌  Config validation failed:\n\n{problems}\n\n"
            f"    Fix config/config.yaml or your .env file and restart.\n",
            file=sys.stderr,
        )
        sys.exit(1)
    except (OSError, ValueError, TypeError) as exc:
        print(
            f"\n❌  Failed to load config: {type(exc).__name__}: {exc}\n",
            file=sys.stderr,
        )
        sys.exit(1)

    # -- Cross-field validation -----------------------------------------------
    try:
        settings.validate_all()
    except ConfigError as exc:
        print(str(exc), file=sys.stderr)
        sys.exit(1)

    # -- Logging --------------------------------------------------------------
    # CLI --log-level flag overrides config.yaml
    setup_logging(
        level=args.log_level or settings.log_level,
        log_dir=settings.log_dir,
        json_format=settings.log_json_format,
        console_output=settings.log_console_output,
        max_bytes=settings.logging.max_file_size_mb * 1024 * 1024,
        backup_count=settings.logging.backup_count,
    )

    log = get_logger("parley.main")
    return settings, log


async def amain(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    settings, log = bootstrap(args)

    log.info(
        "parley.starting",
        interface=args.interface,
        policy=settings.confirmation.policy,
        agent_service_ready=settings.agent_service_ready,
    )

    if not settings.agent_service_ready:
        missing = settings.missing_agent_service_fields()
        print(
            f"\n⚠  Agent service not configured (missing: {', '.join(missing)}).\n"
            f"    Replies will use built-in fallback text. "
            f"Copy .env.example → .env and fill in the values.\n",
            file=sys.stderr,
        )

    Path(settings.log_dir).expanduser().mkdir(parents=True, exist_ok=True)

    # ── Launch interface ───────────────────────────────────────────────────────
    if args.interface == "cli":
        log.info("parley.interface_starting", interface="cli")
        await _run_cli(settings, log)
    elif args.interface == "server":
        log.info("parley.interface_starting", interface="server")
        await _run_server(settings, log)

    return 0


async def _run_cli(settings, log) -> None:
    """Delegates to interfaces/cli.py."""
    from interfaces.cli import run_cli
    await run_cli(settings, log)


async def _run_server(settings, log) -> None:
    """
    HTTP API (threaded, same stack) + WebSocket gateway on one event loop.
    Runs until cancelled (Ctrl+C).
    """
    from gateway.gateway_server import GatewayServer
    from gateway.http_api import PlannerAPI, start_http_server
    from kernel.bootstrap import build_stack

    stack = build_stack(settings)
    srv = settings.server

    api = PlannerAPI(
        stack.gateway,
        stack.exchange_log,
        max_prompt_length=settings.conversation.max_prompt_length,
        history_size=settings.conversation.view_history_size,
    )
    httpd = start_http_server(
        api,
        asyncio.get_running_loop(),
        host=srv.http_host,
        port=srv.http_port,
        webui_dir=srv.webui_dir,
        call_timeout=settings.agent_service.request_timeout_seconds + 5,
    )
    ws = GatewayServer(
        stack.orchestrator,
        host=srv.ws_host,
        port=srv.ws_port,
        auth_token=settings.ws_auth_token,
        max_connections=srv.max_connections,
        history_size=settings.conversation.view_history_size,
    )
    await ws.start()
    print(
        f"Parley listening: http://{srv.http_host}:{srv.http_port}  "
        f"ws://{srv.ws_host}:{srv.ws_port}",
        file=sys.stderr,
    )
    try:
        await ws.wait_closed()
    finally:
        await ws.shutdown()
        httpd.shutdown()
        httpd.server_close()
        log.info("parley.server_stopped")


def main() -> None:
    """Console-script entry point."""
    try:
        sys.exit(asyncio.run(amain()))
    except KeyboardInterrupt:
        sys.exit(130)


if __name__ == "__main__":
    main()
