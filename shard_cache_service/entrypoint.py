#!/usr/bin/env python3
"""Entrypoint for the shard cache service."""

from __future__ import annotations

import argparse
import logging
from wsgiref import simple_server

from shard_cache import CacheCoordinator, ExpirySweeper, Settings

from .app import create_app

logger = logging.getLogger(__name__)

DEFAULT_PORT = 8081


def get_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Argument parsing."""
    parser = argparse.ArgumentParser(description="Shard Cache Service")
    parser.add_argument("--port", type=int, default=DEFAULT_PORT, help="Port to listen on")
    parser.add_argument("--host", default="127.0.0.1", help="Host to bind to")
    parser.add_argument("--threads", type=int, default=4, help="Number of waitress worker threads")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging and the wsgiref server")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> None:
    """Main entrypoint for the cache service."""
    args = get_args(argv)

    log_level = logging.DEBUG if args.debug else logging.INFO
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    logger.info("Starting Shard Cache Service on %s:%d", args.host, args.port)
    settings = Settings()

    # one process only: shard stores live in this process's memory
    coordinator = CacheCoordinator.from_settings(settings)
    app = create_app(coordinator, settings=settings)

    sweeper = None
    if settings.eviction_sweep_interval_seconds is not None:
        sweeper = ExpirySweeper(coordinator, settings.eviction_sweep_interval_seconds)
        sweeper.start()

    try:
        if args.debug:
            with simple_server.make_server(args.host, args.port, app) as httpd:
                logger.info("Serving on http://%s:%d", args.host, args.port)
                httpd.serve_forever()
        else:
            import waitress  # noqa: PLC0415

            waitress.serve(app, host=args.host, port=args.port, threads=args.threads)
    except KeyboardInterrupt:
        logger.info("Shutting down...")
    finally:
        if sweeper is not None:
            sweeper.stop(timeout=5)


if __name__ == "__main__":
    main()
