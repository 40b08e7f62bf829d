"""Application initialization orchestrator."""

from __future__ import annotations

import asyncio
import os
from contextlib import suppress
from typing import TYPE_CHECKING, Optional

from aiohttp import web as aiohttp_web
from aiohttp_wsgi import WSGIHandler

from core.logger import get_logger

if TYPE_CHECKING:
    from config import Config

logger = get_logger(__name__)


class ApplicationInitializer:
    """Orchestrates application initialization and lifecycle.

    Everything runs on one asyncio loop: the database pool, the lottery
    worker and the aiohttp server that hosts the Flask app through
    ``aiohttp-wsgi``.
    """

    def __init__(self, config: Optional["Config"] = None):
        # config imports core, so it cannot be imported at module level here
        from config import load_config

        self.config = config or load_config()
        self.db_pool = None
        self.cache = None
        self.worker = None
        self.manager = None
        self.web_runner = None

    async def initialize(self) -> None:
        """Initialize all application components."""
        from services.async_runner import set_main_loop

        set_main_loop(asyncio.get_running_loop())

        # Initialize database
        await self._init_database()

        # Initialize cache
        self._init_cache()

        # Initialize lottery worker and recover jobs cut off by a restart
        await self._init_lottery()

        # Initialize web server
        await self._init_web_server()

    async def run(self) -> None:
        """Run the application until cancelled."""
        try:
            logger.info("Lottery service running...")
            while True:
                await asyncio.sleep(1)
        except (KeyboardInterrupt, asyncio.CancelledError):
            logger.info("Shutting down...")
        finally:
            await self.cleanup()

    async def cleanup(self) -> None:
        """Cleanup resources."""
        from database import close_db_pool

        with suppress(Exception):
            if self.web_runner:
                await self.web_runner.cleanup()
        with suppress(Exception):
            if self.worker:
                await self.worker.stop()
        with suppress(Exception):
            await close_db_pool()

    async def _init_database(self) -> None:
        """Initialize database pool and run migrations."""
        from database import init_db_pool, run_migrations

        self.db_pool = await init_db_pool(
            database_path=self.config.database_path,
            pool_size=self.config.db_pool_size,
            busy_timeout_ms=self.config.db_busy_timeout,
        )
        await run_migrations(self.db_pool)
        logger.info("✅ Database initialized")

    def _init_cache(self) -> None:
        """Initialize report cache."""
        from services.cache import init_cache

        self.cache = init_cache(ttl=self.config.report_cache_ttl)
        logger.info("✅ Cache initialized")

    async def _init_lottery(self) -> None:
        from services.job_worker import LotteryWorker
        from services.lottery_service import LotteryJobManager

        self.worker = LotteryWorker(
            attempts=self.config.lottery_attempts,
            progress_batch=self.config.lottery_progress_batch,
            commit_timeout=self.config.lottery_commit_timeout,
            commit_retries=self.config.lottery_commit_retries,
            cache=self.cache,
        )
        self.worker.start()
        self.manager = LotteryJobManager(self.worker, cache=self.cache)

        recovered = await self.manager.recover_interrupted_jobs()
        if recovered:
            logger.warning(f"Marked {len(recovered)} interrupted lottery job(s) as FAILED")
        logger.info("✅ Lottery worker started")

    async def _init_web_server(self) -> None:
        """Initialize web server."""
        from web import create_app

        flask_app = create_app(self.config, manager=self.manager)

        # Create WSGI handler for Flask app
        wsgi_handler = WSGIHandler(flask_app)

        # Create aiohttp app and add Flask routes
        aio_app = aiohttp_web.Application()
        aio_app.router.add_route("*", "/{path_info:.*}", wsgi_handler)

        self.web_runner = aiohttp_web.AppRunner(aio_app)
        await self.web_runner.setup()

        # Bind to PORT env var if present (Render/Heroku)
        effective_port = int(os.getenv("PORT", str(self.config.web_port)))
        effective_host = "0.0.0.0" if os.getenv("PORT") else self.config.web_host

        site = aiohttp_web.TCPSite(self.web_runner, effective_host, effective_port)
        await site.start()

        logger.info(f"🚀 Web server started on http://{effective_host}:{effective_port}")
        logger.info(f"🔗 Lottery API: http://{effective_host}:{effective_port}/api/lottery")
