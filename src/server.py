"""Uvicorn runner for the storefront API.

Usage:
    python src/server.py                       # 0.0.0.0:8000
    python src/server.py --port 9000 --reload
    python src/server.py --no-sweeps           # API only; run sweeps elsewhere
"""

import argparse
import os

import uvicorn


def main():
    parser = argparse.ArgumentParser(description="Storefront API server")
    parser.add_argument("--host", default=os.getenv("HOST", "0.0.0.0"))
    parser.add_argument("--port", type=int, default=int(os.getenv("PORT", "8000")))
    parser.add_argument("--reload", action="store_true", help="Reload on source changes (development)")
    parser.add_argument(
        "--no-sweeps",
        action="store_true",
        help="Do not start the background sweeps in this process",
    )
    args = parser.parse_args()

    if args.no_sweeps:
        os.environ["STOREFRONT_SWEEPS"] = "off"

    # A single worker: rate limits, locks and live connections are per process
    uvicorn.run("app:app", host=args.host, port=args.port, reload=args.reload, log_config=None)


if __name__ == "__main__":
    main()
