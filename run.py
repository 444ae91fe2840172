#!/usr/bin/env python3
"""Development launcher for the SMLGPT backend."""

from __future__ import annotations

import argparse
import os
from pathlib import Path

import uvicorn

BACKEND_APP = "smlgpt.main:app"
DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 5000
PROJECT_ROOT = Path(__file__).resolve().parent


def parse_args() -> argparse.Namespace:
    """Parse command line arguments for the launcher script."""

    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument(
        "--host",
        default=os.getenv("HOST", DEFAULT_HOST),
        help="Host interface for the SMLGPT server.",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=int(os.getenv("PORT", DEFAULT_PORT)),
        help="Port for the SMLGPT server.",
    )
    parser.add_argument(
        "--log-level",
        default=os.getenv("LOG_LEVEL", "info"),
        help="Log level passed to Uvicorn.",
    )
    parser.add_argument(
        "--reload",
        dest="reload",
        action="store_true",
        default=os.getenv("RELOAD", "false").lower() in {"1", "true", "yes"},
        help="Enable autoreload (default: off).",
    )
    parser.add_argument(
        "--no-reload",
        dest="reload",
        action="store_false",
        help="Disable autoreload.",
    )
    return parser.parse_args()


def main() -> None:
    """Launch a single Uvicorn server for the API, WebSocket channel and worker."""

    args = parse_args()
    uvicorn.run(
        BACKEND_APP,
        host=args.host,
        port=args.port,
        log_level=args.log_level.lower(),
        reload=args.reload,
        reload_dirs=[str(PROJECT_ROOT / "smlgpt")] if args.reload else None,
    )


if __name__ == "__main__":
    main()
