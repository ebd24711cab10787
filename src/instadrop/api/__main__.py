# src/instadrop/api/__main__.py
from __future__ import annotations

import os

import uvicorn

from instadrop.env import load_dotenv_if_present


def main() -> None:
    # Load .env early so INSTADROP_* vars exist before anything reads them.
    load_dotenv_if_present()

    # Import after dotenv load
    from instadrop.api.app import create_app

    host = os.getenv("INSTADROP_API_HOST", "127.0.0.1")
    port = int(os.getenv("INSTADROP_API_PORT", "3402"))

    uvicorn.run(create_app(), host=host, port=port, log_level="info")


if __name__ == "__main__":
    main()
