"""Direct Flask server runner using environment variables.

The Flask development server runs in the main thread; the database pool and
the lottery worker live on an event loop in a background thread.
"""

from __future__ import annotations

import logging

from config import load_config
from core import setup_logger
from database import init_db_pool, run_migrations
from services.async_runner import run_coroutine_sync, start_background_loop
from services.cache import init_cache
from services.job_worker import LotteryWorker
from services.lottery_service import LotteryJobManager
from web import create_app


async def _bootstrap(config, worker: LotteryWorker, manager: LotteryJobManager) -> None:
    pool = await init_db_pool(config.database_path, config.db_pool_size, config.db_busy_timeout)
    await run_migrations(pool)
    worker.start()
    await manager.recover_interrupted_jobs()


if __name__ == "__main__":
    # Load configuration
    config = load_config()
    setup_logger(name="", level=logging.DEBUG if config.debug else logging.INFO)

    cache = init_cache(ttl=config.report_cache_ttl)
    worker = LotteryWorker(
        attempts=config.lottery_attempts,
        progress_batch=config.lottery_progress_batch,
        commit_timeout=config.lottery_commit_timeout,
        commit_retries=config.lottery_commit_retries,
        cache=cache,
    )
    manager = LotteryJobManager(worker, cache=cache)

    start_background_loop()
    run_coroutine_sync(_bootstrap(config, worker, manager))

    # Create Flask application
    app = create_app(config, manager=manager)

    # Run Flask server; the reloader would start a second background loop
    app.run(host=config.web_host, port=config.web_port, debug=config.debug, use_reloader=False)
