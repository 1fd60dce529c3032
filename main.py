"""Command-line interface for the customer portal."""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from typing import Sequence

from portal.config import PortalSettings, load_settings, resolve_config_path

logger = logging.getLogger("portal.main")


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Customer portal utilities")
    parser.add_argument(
        "--config",
        default=None,
        help="Path to a YAML configuration file (default: PORTAL_CONFIG or config/portal.yaml)",
    )
    subparsers = parser.add_subparsers(dest="command")

    parser.set_defaults(command="serve")

    serve_parser = subparsers.add_parser("serve", help="Start the portal web server")
    serve_parser.add_argument("--host", default="0.0.0.0", help="Bind address for the portal")
    serve_parser.add_argument(
        "--port",
        type=int,
        default=8000,
        help="Port for the portal (default: 8000)",
    )
    serve_parser.add_argument(
        "--ssl-certfile",
        default=None,
        help="Path to the TLS certificate chain in PEM format",
    )
    serve_parser.add_argument(
        "--ssl-keyfile",
        default=None,
        help="Path to the TLS private key in PEM format",
    )
    serve_parser.add_argument(
        "--ssl-keyfile-password",
        default=None,
        help="Password for the TLS private key, if encrypted",
    )

    check_parser = subparsers.add_parser(
        "check-config", help="Print the resolved configuration with secrets redacted"
    )

    for subparser in (serve_parser, check_parser):
        # Suppressed default keeps a value given before the command.
        subparser.add_argument(
            "--config",
            default=argparse.SUPPRESS,
            help="Path to a YAML configuration file",
        )

    args_list = list(argv) if argv is not None else sys.argv[1:]
    known_commands = {"serve", "check-config"}

    global_args: list[str] = []
    if args_list[:1] == ["--config"] and len(args_list) >= 2:
        global_args, args_list = args_list[:2], args_list[2:]

    if not args_list:
        args_list = ["serve"]
    else:
        first = args_list[0]
        if first in ("-h", "--help"):
            return parser.parse_args([*global_args, *args_list])
        if first not in known_commands:
            if any(flag in args_list for flag in ("-h", "--help")):
                return parser.parse_args([*global_args, *args_list])
            args_list = ["serve", *args_list]

    return parser.parse_args([*global_args, *args_list])


def _load_settings(config: str | None) -> PortalSettings:
    path = resolve_config_path(config or os.getenv("PORTAL_CONFIG"))
    return load_settings(path)


def _serve(
    *,
    settings: PortalSettings,
    host: str,
    port: int,
    ssl_certfile: str | None,
    ssl_keyfile: str | None,
    ssl_keyfile_password: str | None,
) -> None:
    from portal.web import create_app
    import uvicorn

    if bool(ssl_certfile) ^ bool(ssl_keyfile):
        raise SystemExit("Both --ssl-certfile and --ssl-keyfile must be provided together.")

    protocol = "https" if ssl_certfile and ssl_keyfile else "http"
    logger.info("Starting customer portal on %s://%s:%s", protocol, host, port)

    app = create_app(settings=settings)
    uvicorn.run(
        app,
        host=host,
        port=port,
        log_level="info",
        proxy_headers=True,
        ssl_certfile=ssl_certfile,
        ssl_keyfile=ssl_keyfile,
        ssl_keyfile_password=ssl_keyfile_password,
    )


def _check_config(settings: PortalSettings) -> None:
    print(json.dumps(settings.redacted(), indent=2, ensure_ascii=False))


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for CLI usage."""

    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")

    args = _parse_args(argv)
    try:
        settings = _load_settings(args.config)
    except (RuntimeError, ValueError) as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return 2

    if args.command == "serve":
        _serve(
            settings=settings,
            host=args.host,
            port=args.port,
            ssl_certfile=args.ssl_certfile,
            ssl_keyfile=args.ssl_keyfile,
            ssl_keyfile_password=args.ssl_keyfile_password,
        )
    elif args.command == "check-config":
        _check_config(settings)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
