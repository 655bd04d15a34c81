#!/usr/bin/env python3
"""
AI Chatbot API - OTP-gated auth + streaming chat completions.
"""

import argparse
import logging
import sys

# Configure logging
logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s", stream=sys.stderr
)

#
# NOTE: Keep chatbot imports lazy (inside main) so `--migrate` does not import the web stack.
#


def _migrate() -> int:
    from chatbot.storage.migrate import apply_migrations
    from chatbot.storage.postgres import dsn_from_env

    dsn = dsn_from_env()
    if not dsn:
        print("Postgres not configured (set POSTGRES_DSN or POSTGRES_* env vars).")
        return 2
    versions = apply_migrations(dsn)
    print(f"Applied: {', '.join(versions)}" if versions else "Schema up to date.")
    return 0


def main():
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        description="AI Chatbot API server",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Apply pending database migrations
  python main.py --migrate

  # Run the API server
  python main.py --serve --port 5000
        """,
    )

    parser.add_argument("--serve", action="store_true", help="Run the HTTP API server")
    parser.add_argument("--migrate", action="store_true", help="Apply pending Postgres migrations and exit")
    parser.add_argument("--host", default="0.0.0.0", help="API server bind host (default: 0.0.0.0)")
    parser.add_argument("--port", type=int, default=5000, help="API server listen port (default: 5000)")

    args = parser.parse_args()

    if args.migrate:
        rc = _migrate()
        if rc or not args.serve:
            sys.exit(rc)

    if args.serve:
        from chatbot.api.server import run as run_server

        run_server(host=args.host, port=args.port)
        return

    # No arguments provided
    parser.print_help()


if __name__ == "__main__":
    main()
