#!/usr/bin/env python3
"""Serve the wagering API with uvicorn.

Bind address comes from the ``api`` config section (PARIMUTUEL_API_HOST /
PARIMUTUEL_API_PORT); ``--host`` and ``--port`` override it.
"""

import argparse

import structlog
import uvicorn

from parimutuel_core.api.app import app, config
from parimutuel_core.logging.setup import setup_logging

logger = structlog.get_logger("api_runner")


def main(argv=None):
    parser = argparse.ArgumentParser(description="Pari-mutuel wagering API")
    parser.add_argument("--host", default=config.api.host)
    parser.add_argument("--port", type=int, default=config.api.port)
    args = parser.parse_args(argv)

    setup_logging(level=config.logging.level, log_format=config.logging.format, service="api")
    logger.info("api_starting", host=args.host, port=args.port)

    try:
        uvicorn.run(app, host=args.host, port=args.port, log_config=None)
    except Exception as e:
        logger.error("api_failed", error=str(e))
        raise


if __name__ == "__main__":
    main()
