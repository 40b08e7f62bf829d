"""Application entry point."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

from config import load_config
from core import setup_logger, ApplicationInitializer

config = load_config()

# Setup logging on the root logger so every module logger is captured
logger = setup_logger(
    name="",
    level=logging.DEBUG if config.debug else logging.INFO,
    log_file=str(Path(config.log_folder) / "lottery.log"),
    colored=True
)


async def main() -> None:
    """Main application entry point."""
    app = ApplicationInitializer(config)
    await app.initialize()
    await app.run()


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Application stopped by user")
    except Exception as e:
        logger.error(f"Application failed: {e}", exc_info=True)
