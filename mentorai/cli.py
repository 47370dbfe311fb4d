#!/usr/bin/env python3
"""
MentorAI - Command Line Interface

Commands:
    converse    - Start an interactive voice/text tutoring session
    ask         - Ask a single question through the response chain
    check       - Report configuration and reachability
    serve       - Run the HTTP API

Usage:
    python -m mentorai.cli converse
    python -m mentorai.cli ask "Teach me calculus basics"
    python -m mentorai.cli ask "Explain quantum entanglement" --speak
    python -m mentorai.cli check
    python -m mentorai.cli serve --port 8000

For help on a specific command:
    python -m mentorai.cli <command> --help
"""

import argparse
import asyncio
import sys

from mentorai.config import TRANSPORT_AUTO, TRANSPORT_AGENT, TRANSPORT_NATIVE, settings
from mentorai.logger import get_logger, init_logging

# Initialize logging
init_logging()
logger = get_logger(__name__)


def cmd_converse(args: argparse.Namespace) -> int:
    """
    Start an interactive session.

    Enter on an empty line speaks, typed text is asked directly.
    """
    from mentorai.realtime.voice_agent import VoiceAssistant, VoiceAssistantConfig, print_banner

    print_banner()

    try:
        config = VoiceAssistantConfig(
            transport=args.transport,
            text_only=args.text_only,
        )
        assistant = VoiceAssistant(config)
    except ValueError as e:
        print(f"❌ Configuration error: {e}")
        print("   Run 'check' to see what is missing, or use --text-only.")
        return 1

    try:
        asyncio.run(assistant.run())
        print("\n👋 Goodbye!")
        return 0
    except KeyboardInterrupt:
        print("\n\n👋 Session interrupted.")
        return 0
    except Exception as e:
        print(f"❌ Session failed: {e}")
        logger.exception("Converse error")
        return 1


async def _ask(question: str, speak: bool) -> int:
    from mentorai.realtime.events import EventBus
    from mentorai.realtime.response_provider import ResponseProvider

    provider = ResponseProvider.from_settings()
    result = await provider.get_response(question)

    print(f"\n💬 Answer ({result.source.value}):\n{result.text}\n")

    if speak:
        from mentorai.realtime.azure_speech import AzureSpeechOutput

        tts = AzureSpeechOutput(EventBus())
        await tts.speak(result.text)
        await tts.wait_done()
    return 0


def cmd_ask(args: argparse.Namespace) -> int:
    """
    Ask one question and print the answer.
    """
    question = " ".join(args.question).strip()
    if not question:
        print("❌ Question must not be empty")
        return 1

    print(f"\n❓ Question: {question}")
    print("-" * 50)

    try:
        return asyncio.run(_ask(question, args.speak))
    except ValueError as e:
        print(f"❌ Configuration error: {e}")
        return 1
    except Exception as e:
        print(f"❌ Ask failed: {e}")
        logger.exception("Ask error")
        return 1


def cmd_check(args: argparse.Namespace) -> int:
    """
    Check the configuration.
    """
    print("\n🔧 Checking Configuration")
    print("-" * 50)

    problems = 0

    def report(ok: bool, label: str, detail: str = "") -> None:
        nonlocal problems
        mark = "✅" if ok else "❌"
        if not ok:
            problems += 1
        print(f"{mark} {label}" + (f": {detail}" if detail else ""))

    try:
        settings.voice.validate()
        report(True, "Voice", f"rate={settings.voice.rate} pitch={settings.voice.pitch} volume={settings.voice.volume}")
    except ValueError as e:
        report(False, "Voice", str(e))

    try:
        settings.capture.validate()
        report(True, "Capture timeout", f"{settings.capture.timeout_s:.0f}s")
    except ValueError as e:
        report(False, "Capture timeout", str(e))

    report(
        True,
        "Response endpoint",
        settings.response.api_url if settings.response.is_remote_enabled else "not set (local rules only)",
    )

    print(f"   Azure Speech:   {'configured' if settings.speech.is_configured else 'not configured'}")
    print(f"   External agent: {'configured' if settings.agent.is_configured else 'not configured'}")

    try:
        transport = settings.resolve_transport()
        report(True, "Voice transport", f"{transport} (requested: {settings.transport})")
    except ValueError as e:
        report(False, "Voice transport", str(e))

    print(f"\nEnvironment: {settings.app_env}")
    print(f"API:         http://{settings.api_host}:{settings.api_port}")

    print("-" * 50)
    if problems:
        print(f"⚠️  {problems} problem(s) found")
        return 1
    print("✅ All checks passed")
    return 0


def cmd_serve(args: argparse.Namespace) -> int:
    """
    Run the HTTP API with uvicorn.
    """
    import uvicorn

    print(f"\n🌐 Serving MentorAI API on http://{args.host}:{args.port}")
    uvicorn.run(
        "api_server:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_level="debug" if args.verbose else "info",
    )
    return 0


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser with all commands."""
    parser = argparse.ArgumentParser(
        prog="mentorai",
        description="MentorAI voice tutor CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  Talk to your mentor:
    python -m mentorai.cli converse
    python -m mentorai.cli converse --text-only

  Ask a question:
    python -m mentorai.cli ask "Teach me calculus basics"
    python -m mentorai.cli ask "Explain quantum entanglement" --speak

  Operations:
    python -m mentorai.cli check
    python -m mentorai.cli serve --port 8000
        """
    )

    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose output"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Converse command
    converse_parser = subparsers.add_parser(
        "converse",
        help="Start an interactive tutoring session"
    )
    converse_parser.add_argument(
        "--transport", "-t",
        choices=[TRANSPORT_AUTO, TRANSPORT_NATIVE, TRANSPORT_AGENT],
        default=None,
        help="Voice transport (default: VOICE_TRANSPORT from settings)"
    )
    converse_parser.add_argument(
        "--text-only",
        action="store_true",
        help="No microphone or speaker, answers are printed"
    )
    converse_parser.set_defaults(func=cmd_converse)

    # Ask command
    ask_parser = subparsers.add_parser(
        "ask",
        help="Ask a single question"
    )
    ask_parser.add_argument(
        "question",
        nargs="+",
        help="Question to ask"
    )
    ask_parser.add_argument(
        "--speak", "-s",
        action="store_true",
        help="Speak the answer with Azure Speech"
    )
    ask_parser.set_defaults(func=cmd_ask)

    # Check command
    check_parser = subparsers.add_parser(
        "check",
        help="Check configuration"
    )
    check_parser.set_defaults(func=cmd_check)

    # Serve command
    serve_parser = subparsers.add_parser(
        "serve",
        help="Run the HTTP API"
    )
    serve_parser.add_argument(
        "--host",
        default=settings.api_host,
        help=f"Bind address (default: {settings.api_host})"
    )
    serve_parser.add_argument(
        "--port", "-p",
        type=int,
        default=settings.api_port,
        help=f"Port (default: {settings.api_port})"
    )
    serve_parser.add_argument(
        "--reload",
        action="store_true",
        help="Reload on code changes"
    )
    serve_parser.set_defaults(func=cmd_serve)

    return parser


def main(argv=None) -> int:
    """Main entry point for the CLI."""
    parser = create_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 0

    if args.verbose:
        init_logging("DEBUG")

    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
