"""Entry point for running the OnlineXO store service via ``python -m onlinexo``."""

from __future__ import annotations

import logging
import os

import uvicorn


def main() -> None:
    """Start the FastAPI-powered OnlineXO session store."""

    logging.basicConfig(level=os.environ.get("ONLINEXO_LOG_LEVEL", "INFO").upper())
    host = os.environ.get("ONLINEXO_HOST", "0.0.0.0")
    port = int(os.environ.get("ONLINEXO_PORT", "8000"))
    uvicorn.run("onlinexo.api:app", host=host, port=port, reload=False)


if __name__ == "__main__":
    main()
