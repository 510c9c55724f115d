"""Command line entry point for the annotation service."""
from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from cosmos_server.api import create_app
from cosmos_server.logging_utils import configure_logging
from cosmos_server.settings import SETTINGS_FILE, load_server_settings
from version import __version__

_LOGGER = logging.getLogger("Cosmos.Server.Cli")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="cosmos-server", description="Cosmos Explorer annotation service")
    parser.add_argument("--host", default="127.0.0.1", help="Interface to bind (default: %(default)s)")
    parser.add_argument("--port", type=int, default=8765, help="Port to listen on (default: %(default)s)")
    parser.add_argument("--data-dir", type=Path, default=None, help="Directory holding annotations.json")
    parser.add_argument("--static-dir", type=Path, default=None, help="Directory for root-relative images")
    parser.add_argument(
        "--config",
        type=Path,
        default=Path(SETTINGS_FILE),
        help="Settings JSON file (default: %(default)s)",
    )
    parser.add_argument("--log-dir", type=Path, default=None, help="Directory for rotating log files")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging and Flask debug mode")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    overrides: Dict[str, Any] = {}
    if args.data_dir is not None:
        overrides["data_dir"] = args.data_dir
    if args.static_dir is not None:
        overrides["static_dir"] = args.static_dir
    if args.debug:
        overrides["debug"] = True
    settings = load_server_settings(args.config, overrides=overrides)
    configure_logging(debug=settings.debug, log_dir=args.log_dir, retention=settings.log_retention)
    _LOGGER.info(
        "Starting Cosmos Explorer %s on %s:%s (data=%s, inference=%s)",
        __version__,
        args.host,
        args.port,
        settings.annotations_path,
        "configured" if settings.hf_api_token else "disabled",
    )
    app = create_app(settings)
    app.run(host=args.host, port=args.port, debug=settings.debug, use_reloader=False)
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
