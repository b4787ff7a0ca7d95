from __future__ import annotations

import argparse

import uvicorn

from queuewatch.apps.api.main import create_app
from queuewatch.core.config import get_settings


def main() -> None:
    parser = argparse.ArgumentParser(description="Serve the Queuewatch retry endpoint.")
    parser.add_argument("--host", default="0.0.0.0")
    parser.add_argument("--port", type=int, default=8000)
    args = parser.parse_args()
    # Serve with env-driven settings; the retry route is mounted only when enabled.
    app = create_app(settings=get_settings())
    uvicorn.run(app, host=args.host, port=args.port)


if __name__ == "__main__":
    main()
