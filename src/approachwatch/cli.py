"""Command-line interface for approachwatch.

Parses arguments, configures logging, loads the configuration and runs the
:class:`~approachwatch.app.service.Service` until interrupted (or for a
fixed number of cycles with ``--cycles``).
"""

from __future__ import annotations

import argparse
import asyncio
import logging

from approachwatch import __version__
from approachwatch.app.service import Service
from approachwatch.config import load_config


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments (``argv`` None reads ``sys.argv``)."""
    p = argparse.ArgumentParser(
        prog="approachwatch",
        description="Approach alerts for aircraft around one airport",
    )
    p.add_argument(
        "--config",
        type=str,
        default=None,
        help="YAML file merged over the packaged defaults (env: APPROACHWATCH_CONFIG)",
    )
    p.add_argument(
        "--simulate",
        action="store_true",
        default=None,
        help="Use synthetic traffic instead of live feeds (env: SIMULATE)",
    )
    p.add_argument(
        "--seed",
        type=int,
        default=None,
        help="Random seed for --simulate",
    )
    p.add_argument(
        "--cycles",
        type=int,
        default=None,
        help="Run this many poll cycles then exit (default: run forever)",
    )
    p.add_argument("--debug", action="store_true", help="Verbose logging")
    p.add_argument("--version", action="store_true", help="Print version and exit")
    return p.parse_args(argv)


def configure_logging(debug: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(asctime)s.%(msecs)03d [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )
    if not debug:
        logging.getLogger("aiohttp").setLevel(logging.WARNING)
        logging.getLogger("asyncio").setLevel(logging.WARNING)


async def run_async(argv: list[str] | None = None) -> None:
    """Async entrypoint for programmatic usage/testing."""
    args = parse_args(argv)
    if args.version:
        print(f"approachwatch {__version__}")
        return

    cfg = load_config(args.config)
    if args.simulate:
        cfg = cfg.model_copy(update={"simulate": True})
    service = Service(cfg, seed=args.seed)
    await service.run(cycles=args.cycles)


def main(argv: list[str] | None = None) -> None:
    """Synchronous entrypoint for the console script."""
    args = parse_args(argv)
    if args.version:
        print(f"approachwatch {__version__}")
        return
    configure_logging(args.debug)
    try:
        asyncio.run(run_async(argv))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
