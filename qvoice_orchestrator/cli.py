"""CLI entrypoint for QVoiceTxt: an interactive terminal chat with Agent Q."""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from dotenv import load_dotenv

from agent_logging import setup_logging
from qvoice_gateway.router import RouteStatus
from storage.message_store import Utterance

from .config import Config
from .reminders import REMINDER_PREFIX
from .runtime import ChatRuntime, build_runtime

ROOT_DIR = Path(__file__).resolve().parents[1]

logger = logging.getLogger(__name__)

QUIT_COMMANDS = {":quit", ":q", ":exit"}


def _reminder_printer(bot_user_id: str):
    """Build a store subscriber that prints reminders as they are delivered."""
    seen: set[int] = set()
    primed = False

    def on_snapshot(snapshot: list[Utterance]) -> None:
        nonlocal primed
        fresh = [u for u in snapshot if u.id not in seen]
        seen.update(u.id for u in fresh)
        if not primed:
            primed = True
            return
        for utterance in fresh:
            if utterance.user_id == bot_user_id and (utterance.text or "").startswith(REMINDER_PREFIX):
                print(f"\n{utterance.text}\n> ", end="", flush=True)

    return on_snapshot


async def run_repl(runtime: ChatRuntime) -> None:
    session = runtime.session
    session.add_status_listener(lambda status: print(f"[channel] {status}"))
    await runtime.start()
    runtime.store.subscribe(_reminder_printer(runtime.config.bot_user_id))

    print(f"Connected as {session.user_id}. Type /help for commands, :quit to exit.")
    while True:
        try:
            line = await asyncio.to_thread(input, "> ")
        except EOFError:
            break
        if line.strip().lower() in QUIT_COMMANDS:
            break

        result = await session.submit(line)
        if result.status is RouteStatus.TOKENIZED:
            print(f"[token #{result.token_index}] {runtime.codec.decode(result.token_index)}")
            if result.reply:
                print(result.reply)
        elif result.status is RouteStatus.HANDLED and result.reply:
            print(result.reply)
        elif result.status is RouteStatus.NOT_READY:
            print("Awaiting secure channel establishment...")


def main():
    """Main CLI entrypoint"""
    parser = argparse.ArgumentParser(
        description="QVoiceTxt - secure-channel chat with Agent Q",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Chat with the live API (GEMINI_API_KEY set)
  qvoicetxt

  # Chat with the simulated agent
  qvoicetxt --offline

Environment Variables:
  GEMINI_API_KEY              API key for the generative-content API (optional)
  GEMINI_TEXT_MODEL           Text model (default: gemini-2.5-flash-preview-09-2025)
  GEMINI_MAX_ATTEMPTS         Attempts per API call (default: 3)
  QVOICE_STATE_DIR            State directory (default: ~/.local/state/qvoicetxt)
  QVOICE_INITIAL_AUTH_TOKEN   Sign in with this token instead of anonymously
  QVOICE_REMINDER_INTERVAL    Reminder poll interval in seconds (default: 12)
  QVOICE_TOKEN_DICTIONARY     '|'-separated phrases sent as number tokens
        """,
    )

    parser.add_argument(
        "--offline",
        action="store_true",
        help="Use the simulated agent even if an API key is configured",
    )

    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Log to the console as well as the log file",
    )

    parser.add_argument(
        "--version",
        action="version",
        version="%(prog)s 0.1.0",
    )

    args = parser.parse_args()

    load_dotenv(dotenv_path=ROOT_DIR / ".env")

    try:
        config = Config.from_env()
        config.validate()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        print("\nPlease check your environment variables.", file=sys.stderr)
        sys.exit(1)

    setup_logging(
        "CLI",
        log_dir=str(config.log_dir / "cli"),
        log_level="DEBUG" if args.verbose else config.log_level,
        console_output=args.verbose,
    )
    logger.info(f"QVoiceTxt CLI starting (state_dir={config.state_dir}, offline={args.offline})")

    runtime = build_runtime(config, offline=args.offline)

    async def _run() -> None:
        try:
            await run_repl(runtime)
        finally:
            await runtime.close()

    try:
        asyncio.run(_run())
    except KeyboardInterrupt:
        logger.info("Shutting down gracefully...")
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        print(f"Fatal error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
