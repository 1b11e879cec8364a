"""
Run the API server:

    DATABASE_PATH=chat.db OPENAI_API_KEY=... python -m branching_chat
"""

import uvicorn
from loguru import logger

from branching_chat.api.app import create_app
from branching_chat.config import Settings
from branching_chat.utils.logging import configure_logging


def main() -> None:
    settings = Settings.from_env()
    configure_logging(settings.log_level)
    logger.info(f"Starting Branching Chat API on port {settings.port}")
    uvicorn.run(create_app(settings), host="0.0.0.0", port=settings.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    main()
