"""Signage display agent entry point.

Usage:
    python -m display.signage_display [--config CONFIG_PATH]
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
from pathlib import Path

from .agent import DisplayAgent
from .config import DisplayConfig


def main() -> None:
    parser = argparse.ArgumentParser(description="Signage Display Agent")
    parser.add_argument(
        "--config", "-c",
        default=None,
        help="Path to config.json (default: ~/.signage-display/config.json if present)",
    )
    parser.add_argument(
        "--server",
        default=None,
        help="Signage server URL (overrides config)",
    )
    parser.add_argument(
        "--display-id",
        default=None,
        help="Display ID (overrides config)",
    )
    parser.add_argument(
        "--name",
        default=None,
        help="Display name (overrides config)",
    )
    parser.add_argument(
        "--location",
        default=None,
        help="Display location (overrides config)",
    )
    parser.add_argument(
        "--tags",
        default=None,
        help="Comma-separated provisioning tags (overrides config)",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )
    args = parser.parse_args()

    # Logging
    level = logging.DEBUG if args.debug else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )
    log = logging.getLogger(__name__)

    # Load config
    config_path = args.config
    if config_path is None:
        candidate = Path.home() / ".signage-display" / "config.json"
        if candidate.exists():
            config_path = str(candidate)

    if config_path:
        config = DisplayConfig.load(config_path)
        log.info("Loaded config from %s", config_path)
    else:
        config = DisplayConfig()
        log.warning("No config found — using defaults")

    # CLI overrides
    if args.server:
        config.server_url = args.server
    if args.display_id:
        config.display_id = args.display_id
    if args.name:
        config.name = args.name
    if args.location:
        config.location = args.location
    if args.tags is not None:
        config.tags = [t.strip() for t in args.tags.split(",") if t.strip()]

    # Generate ID if empty, and keep it so the server remembers this display's tags
    if not config.display_id:
        config.display_id = config.generate_id()
        if config_path:
            config.save(config_path)

    agent = DisplayAgent(config)

    # Graceful shutdown on SIGINT/SIGTERM
    loop = asyncio.new_event_loop()
    main_task = loop.create_task(agent.start())

    def _shutdown(sig: int) -> None:
        log.info("Received signal %d — shutting down", sig)
        main_task.cancel()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _shutdown, sig)

    try:
        loop.run_until_complete(main_task)
    except KeyboardInterrupt:
        pass
    finally:
        loop.run_until_complete(agent.stop())
        loop.close()


if __name__ == "__main__":
    main()
