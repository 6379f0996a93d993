"""
Command-line interface for echo-agent.
"""

import argparse
import asyncio
import logging
import signal
import sys

import structlog
import uvicorn

from .config import Settings, get_settings

logger = structlog.get_logger()


def configure_logging(level: str = "INFO") -> None:
    """Route structlog through stdlib logging with console rendering."""
    logging.basicConfig(level=level.upper(), format="%(message)s", stream=sys.stderr)
    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def main() -> None:
    """Main entry point for the CLI."""
    parser = argparse.ArgumentParser(
        prog="echo-agent",
        description="echo-agent - streaming voice-assistant agent with MCP tools",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    serve_parser = subparsers.add_parser("serve", help="Start the HTTP streaming server")
    serve_parser.add_argument("--host", default=None, help="Host to bind to")
    serve_parser.add_argument("--port", type=int, default=None, help="Port to bind to")

    subparsers.add_parser("chat", help="Chat with the agent in the terminal")

    config_parser = subparsers.add_parser("config", help="Show configuration")
    config_parser.add_argument("--check", action="store_true", help="Check configuration validity")

    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    settings = get_settings()
    configure_logging(settings.log_level)

    if args.command == "serve":
        run_server(settings, args.host or settings.host, args.port or settings.port)
    elif args.command == "chat":
        asyncio.run(run_chat(settings))
    elif args.command == "config":
        show_config(settings, args.check)
    else:
        parser.print_help()


def run_server(settings: Settings, host: str, port: int) -> None:
    """Run the FastAPI server; the app lifespan owns startup and shutdown."""
    logger.info("Starting echo-agent server", host=host, port=port)

    uvicorn.run(
        "echo_agent.api.app:create_app",
        host=host,
        port=port,
        factory=True,
        log_level=settings.log_level.lower(),
    )


async def _stdin_reader() -> asyncio.StreamReader:
    loop = asyncio.get_running_loop()
    reader = asyncio.StreamReader()
    await loop.connect_read_pipe(lambda: asyncio.StreamReaderProtocol(reader), sys.stdin)
    return reader


async def run_chat(settings: Settings) -> None:
    """Interactive terminal loop.

    Ctrl+C cancels the running turn, or exits when idle. Every exit path
    (quit, EOF, SIGTERM, unexpected error) ends in one runtime shutdown.
    """
    from .runtime import Runtime

    runtime = Runtime(settings)
    loop = asyncio.get_running_loop()
    main_task = asyncio.current_task()
    if main_task is None:
        raise RuntimeError("run_chat must run inside an asyncio task")

    def on_interrupt() -> None:
        agent = runtime.agent
        if agent is not None and agent.busy:
            print("\n[Interrupted - stopping current turn]")
            agent.cancel()
        else:
            main_task.cancel()

    loop.add_signal_handler(signal.SIGINT, on_interrupt)
    loop.add_signal_handler(signal.SIGTERM, main_task.cancel)

    try:
        agent = await runtime.start()
        reader = await _stdin_reader()

        print("\necho-agent started!")
        print("Type your queries, 'clear' to reset history or 'quit' to exit.")

        while True:
            print("\nQuery: ", end="", flush=True)
            line = await reader.readline()
            if not line:
                break
            query = line.decode("utf-8", errors="replace").strip()

            if not query:
                continue
            if query.lower() == "quit":
                break
            if query.lower() == "clear":
                runtime.store.clear()
                runtime.store.persist()
                print("History cleared.")
                continue

            async for event in agent.submit(query):
                if event.kind == "text":
                    print(event.text, end="", flush=True)
                elif event.kind == "tool_start":
                    print(f"\n[{event.text} ...]", flush=True)
                elif event.kind == "tool_end":
                    print(f"[{event.text} done]", flush=True)
                elif event.kind == "error":
                    print(f"\n[error] {event.text}", flush=True)
            print()

    except asyncio.CancelledError:
        logger.info("Received termination signal, cleaning up")
    except Exception as e:
        logger.error("Chat loop failed", error=str(e))
    finally:
        loop.remove_signal_handler(signal.SIGINT)
        loop.remove_signal_handler(signal.SIGTERM)
        await runtime.shutdown()


def show_config(settings: Settings, check: bool) -> None:
    """Show current configuration."""

    def mask(value: str) -> str:
        if not value:
            return "(not set)"
        return value[:4] + "..." + value[-4:] if len(value) > 10 else "****"

    print("\n=== echo-agent Configuration ===\n")

    print("Server:")
    print(f"  Host: {settings.host}")
    print(f"  Port: {settings.port}")

    print("\nLLM:")
    print(f"  Provider: {settings.provider}")
    print(f"  Model: {settings.model}")
    print(f"  Temperature: {settings.temperature}")
    print(f"  OpenRouter Key: {mask(settings.openrouter_api_key)}")
    print(f"  OpenAI Key: {mask(settings.openai_api_key)}")
    print(f"  Anthropic Key: {mask(settings.anthropic_api_key)}")
    print(f"  Google Key: {mask(settings.google_api_key)}")

    print("\nConversation:")
    print(f"  Snapshot: {settings.snapshot_path}")
    print(f"  Message Limit: {settings.message_limit}")
    print(f"  Compression Limit: {settings.message_compression_limit}")
    print(f"  Max Steps: {settings.max_steps}")
    print(f"  Timeout: {settings.timeout_seconds}s")

    print("\nTools:")
    print(f"  Tool Clients: {', '.join(settings.tool_clients) or '(none)'}")
    print(f"  Tool Servers: {len(settings.tool_servers)}")
    print(f"  Ignored: {', '.join(settings.ignore_list) or '(none)'}")
    print(f"  Startup Processes: {len(settings.startup_processes)}")

    if check:
        print("\n=== Configuration Check ===\n")
        errors = []

        llm_config = settings.get_llm_config()
        if not llm_config.api_key:
            errors.append(f"No API key set for provider '{settings.provider}'")

        for server in settings.tool_servers:
            if not server.command.strip():
                errors.append("A tool server has an empty command")

        if errors:
            print("❌ Errors:")
            for e in errors:
                print(f"   - {e}")
            print("\n❌ Configuration has errors - fix them before starting")
        else:
            print("✅ Configuration looks good!")


if __name__ == "__main__":
    main()
