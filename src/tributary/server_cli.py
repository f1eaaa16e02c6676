"""CLI entry point for the Tributary API server."""

import argparse
import os


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tributary-server",
        description="Tributary API server: third-party integration sync engine",
    )
    parser.add_argument("--host", default="0.0.0.0", help="Bind host (default: 0.0.0.0)")
    parser.add_argument("--port", type=int, default=8080, help="Bind port (default: 8080)")
    parser.add_argument("--local", action="store_true", help="SQLite database and console logs")
    parser.add_argument(
        "--no-scheduler",
        action="store_true",
        help="Serve triggers and webhooks only; do not run scheduled syncs in this process",
    )
    parser.add_argument(
        "--log-level",
        choices=["debug", "info", "warning", "error"],
        help="Overrides TRIBUTARY_LOG_LEVEL",
    )
    return parser


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)

    # Settings are read when tributary.main is imported, so the environment is set first.
    overrides = {
        "TRIBUTARY_LOCAL_MODE": "1" if args.local else None,
        "TRIBUTARY_SCHEDULER_ENABLED": "0" if args.no_scheduler else None,
        "TRIBUTARY_LOG_LEVEL": args.log_level,
    }
    os.environ.update({key: value for key, value in overrides.items() if value is not None})

    import uvicorn

    uvicorn.run(
        "tributary.main:app",
        host=args.host,
        port=args.port,
        log_level=args.log_level or "info",
    )


if __name__ == "__main__":
    main()
