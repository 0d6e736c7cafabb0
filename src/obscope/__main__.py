"""Entry point: python -m obscope."""

import os

import uvicorn

from obscope.app import create_app

if __name__ == "__main__":
    uvicorn.run(
        create_app(),
        host=os.environ.get("OBSCOPE_HOST", "127.0.0.1"),
        port=int(os.environ.get("OBSCOPE_PORT", "9090")),
        log_level=os.environ.get("OBSCOPE_LOG_LEVEL", "info"),
    )
