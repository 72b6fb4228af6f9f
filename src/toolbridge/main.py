"""
toolbridge entry point.

This file handles startup concerns (arg-parsing, logging) and launches the appropriate interface
(API server, or API server plus the CLI chat client).
"""

import argparse
import logging
import sys

from toolbridge.api.app import run_api
from toolbridge.config import settings

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def _init_logging(level: str) -> None:
    numeric = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=numeric,
        format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
        stream=sys.stderr,
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------
def main(argv: list[str] | None = None) -> None:
    """
    Main entry point for the toolbridge application.

    This function sets up the command-line interface, initializes logging, and starts the
    application in either API or CLI mode.
    """
    if argv is None:
        argv = sys.argv[1:]

    parser = argparse.ArgumentParser(description="Run the toolbridge tool server and chat client")
    parser.add_argument(
        "--mode",
        choices=["api", "cli"],
        type=str.lower,
        default="api",
        help="Launch the tool server only, or the server plus the chat CLI (default: api)",
    )
    parser.add_argument(
        "--log-level",
        choices=["debug", "info", "warning", "error", "critical"],
        type=str.lower,
        default=settings.LOG_LEVEL,
        help="Logging level (default from env: %(default)s)",
    )
    parser.add_argument(
        "--planner",
        choices=["openai", "anthropic", "tgi", "rules"],
        type=str.lower,
        default=None,
        help="Planner backend for the chat CLI (default from env: PLANNER)",
    )
    args = parser.parse_args(argv)

    # Override settings with command-line arguments
    settings.LOG_LEVEL = args.log_level
    if args.planner:
        settings.PLANNER = args.planner

    _init_logging(settings.LOG_LEVEL)

    logger.info("Starting toolbridge [%s mode]", args.mode)
    secrets = {"OPENAI_API_KEY", "ANTHROPIC_API_KEY", "GITHUB_TOKEN", "TWITTER_BEARER_TOKEN"}
    logger.debug("Settings: %s", settings.model_dump(exclude=secrets))

    if args.mode == "api":
        run_api(host=settings.API_HOST, port=settings.API_PORT, reload=settings.DEBUG)
        return

    # Lazy import to avoid client dependencies if not needed
    import threading  # pylint: disable=import-outside-toplevel

    from toolbridge.client.cli import run_cli  # pylint: disable=import-outside-toplevel

    # Start API server in a separate thread
    api_thread = threading.Thread(
        target=run_api,
        kwargs={
            "host": settings.API_HOST,
            "port": settings.API_PORT,
            "reload": False,  # Reload doesn't work well with threading
            "log_level": "warning",
        },
        daemon=True,
    )
    api_thread.start()

    # Run CLI in main thread
    run_cli(f"http://localhost:{settings.API_PORT}/mcp")


if __name__ == "__main__":
    main()
