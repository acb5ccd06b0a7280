"""Run the FastAPI app for the Ariko agent."""

from __future__ import annotations

import logging
import os

import uvicorn

from ariko.api import create_app

logging.basicConfig(
    level=os.getenv("ARIKO_LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = create_app()


if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host=os.getenv("ARIKO_HOST", "127.0.0.1"),
        port=int(os.getenv("ARIKO_PORT", "8000")),
        reload=False,
    )
