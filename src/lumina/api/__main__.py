# src/lumina/api/__main__.py
from __future__ import annotations

import os

import uvicorn

from lumina.env import load_dotenv_if_present


def main() -> None:
    # Load .env early so LUMINA_* vars exist before anything reads them.
    load_dotenv_if_present()

    # Import after dotenv load (config is read at app creation).
    from lumina.api.app import create_app
    from lumina.api.structured_logging import configure_structured_logging
    from lumina.runtime.pool_config import load_pool_config

    cfg = load_pool_config()
    configure_structured_logging(cfg.log_level)

    host = os.getenv("LUMINA_API_HOST", "127.0.0.1")
    port = int(os.getenv("LUMINA_API_PORT", "8080"))

    uvicorn.run(create_app(), host=host, port=port, log_level="info")


if __name__ == "__main__":
    main()
