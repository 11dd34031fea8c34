"""
Entry point for running the HTTP/JSON IoT agent.

Usage:
    # Run with defaults (ingest on port 80, metrics on port 8000)
    python -m iotagent

    # Custom ports and config file
    python -m iotagent --port 8080 --metrics-port 9090 --config config/local.yaml

    # Log to stdout only (containers)
    python -m iotagent --log-to-stdout

Service addresses default to the platform's in-cluster names and can be
overridden with DEVM_ADDRESS, AUTH_ADDRESS, DATA_BROKER_ADDRESS and
KAFKA_ADDRESS (also read from a .env file at the project root).
"""

import argparse
import asyncio
import logging
import os
import signal
import socket
import sys
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from prometheus_client import start_http_server

from config.config import load_config
from core.errors import InitializationError
from core.logging import get_logger, log_exception, setup_logging
from iotagent.agent import IoTAgent
from iotagent.http_ingest import IngestServer
from iotagent.metrics import REGISTRY

# __main__.py is at src/iotagent/__main__.py, so root is 3 levels up
PROJECT_ROOT = Path(__file__).parent.parent.parent

# Placeholder logger until setup_logging() is called in main()
logger = logging.getLogger(__name__)


def parse_args(argv: Optional[list] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Run the HTTP/JSON IoT agent",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    python -m iotagent
    python -m iotagent --port 8080 --metrics-port 9090
    python -m iotagent --no-retry --log-level DEBUG
        """,
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to config.yaml (default: bundled config/config.yaml)",
    )
    parser.add_argument(
        "--host",
        default=os.getenv("IOTAGENT_HOST", "0.0.0.0"),
        help="Interface the ingest server binds to (default: 0.0.0.0)",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=int(os.getenv("IOTAGENT_PORT", "80")),
        help="Port for the HTTP ingest server (default: 80)",
    )
    parser.add_argument(
        "--metrics-port",
        type=int,
        default=8000,
        help="Port for Prometheus metrics server, 0 to disable (default: 8000)",
    )
    parser.add_argument(
        "--no-retry",
        action="store_true",
        help="Try the tenant bootstrap only once instead of retrying forever",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="INFO",
        help="Logging level (default: INFO)",
    )
    parser.add_argument(
        "--log-dir",
        type=str,
        default=None,
        help="Log directory path (default: from LOG_DIR env var or ./logs)",
    )
    parser.add_argument(
        "--log-to-stdout",
        action="store_true",
        help="Send all log output to stdout only, skipping file handlers. "
        "Can also be set via LOG_TO_STDOUT environment variable.",
    )
    return parser.parse_args(argv)


def start_metrics_server(preferred_port: int) -> int:
    """Start Prometheus metrics server with automatic port fallback.
    Returns actual port number that the server is listening on."""
    try:
        start_http_server(preferred_port, registry=REGISTRY)
        return preferred_port
    except OSError as e:
        if e.errno != 98:
            raise
        logger.info(
            "Port already in use, finding available port",
            extra={"preferred_port": preferred_port},
        )
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
            s.bind(("", 0))
            s.listen(1)
            available_port = s.getsockname()[1]
        start_http_server(available_port, registry=REGISTRY)
        return available_port


def setup_signal_handlers(loop: asyncio.AbstractEventLoop, shutdown_event: asyncio.Event) -> None:
    """First signal stops gracefully; a second one cancels every task."""

    def handle_signal(sig):
        logger.info("Received signal, initiating graceful shutdown", extra={"signal": sig.name})
        if not shutdown_event.is_set():
            shutdown_event.set()
        else:
            logger.warning("Received second signal, forcing immediate shutdown...")
            for task in asyncio.all_tasks(loop):
                task.cancel()

    if sys.platform == "win32":
        logger.debug("Signal handlers not supported on Windows, using KeyboardInterrupt")
        return

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, lambda s=sig: handle_signal(s))


async def run(args: argparse.Namespace) -> None:
    config = load_config(config_path=args.config) if args.config else load_config()
    agent = IoTAgent(config=config)
    server = IngestServer(agent, host=args.host, port=args.port)

    shutdown_event = asyncio.Event()
    setup_signal_handlers(asyncio.get_running_loop(), shutdown_event)

    await agent.init(retry=config.bootstrap_retry and not args.no_retry)
    try:
        await server.start()
        await shutdown_event.wait()
    finally:
        await server.stop()
        await agent.stop()


def main(argv: Optional[list] = None) -> int:
    load_dotenv(PROJECT_ROOT / ".env")

    global logger
    args = parse_args(argv)

    log_to_stdout = args.log_to_stdout or os.getenv("LOG_TO_STDOUT", "false").lower() in (
        "true",
        "1",
        "yes",
    )
    json_logs = os.getenv("JSON_LOGS", "true").lower() in ("true", "1", "yes")
    setup_logging(
        name="iotagent",
        log_dir=Path(args.log_dir or os.getenv("LOG_DIR", "logs")),
        json_format=json_logs,
        console_level=getattr(logging, args.log_level),
        log_to_stdout=log_to_stdout,
    )
    logger = get_logger(__name__)

    if args.metrics_port:
        port = start_metrics_server(args.metrics_port)
        logger.info("Metrics server started", extra={"http_url": f"http://0.0.0.0:{port}/metrics"})

    try:
        asyncio.run(run(args))
    except (InitializationError, FileNotFoundError, ValueError) as e:
        log_exception(logger, e, "IoT agent failed to start", include_traceback=False)
        return 1
    except KeyboardInterrupt:
        logger.info("Interrupted, exiting")
    return 0


if __name__ == "__main__":
    sys.exit(main())
