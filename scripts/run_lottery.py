#!/usr/bin/env python3
"""
Run a lottery for one event from the command line and wait for it to finish.

Usage:
    python scripts/run_lottery.py --event 1 --admin 1 --grade-order DESCENDING
    python scripts/run_lottery.py --event 1 --admin 1 --seed 123456789 --json
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

# Add the project root to the import path
project_root = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(project_root))

from config import load_config
from core import setup_logger, GradeOrder, ApplicationError, JobStatus
from database import close_db_pool, init_db_pool, run_migrations
from database.admin_queries import LotteryReportDatabase
from services.cache import init_cache
from services.job_worker import LotteryWorker
from services.lottery_service import LotteryJobManager, LotteryPolicy

logger = logging.getLogger("run_lottery")


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run the job shadow lottery for an event")
    parser.add_argument("--event", type=int, required=True, help="Event id")
    parser.add_argument("--admin", type=int, required=True, help="Id of the FULL admin starting the run")
    parser.add_argument("--database", help="SQLite database path (defaults to DATABASE_PATH)")
    parser.add_argument(
        "--grade-order",
        choices=[order.value for order in GradeOrder],
        help="Grade priority; saved to the school's configuration",
    )
    parser.add_argument("--seed", type=int, help="Replay a run with a known seed")
    parser.add_argument("--attempts", type=int, help="Seeds to try, keeping the best assignment")
    parser.add_argument("--json", action="store_true", help="Print the final statistics as JSON")
    return parser.parse_args(argv)


async def run(args: argparse.Namespace) -> int:
    config = load_config()
    database_path = args.database or config.database_path

    pool = await init_db_pool(database_path, config.db_pool_size, config.db_busy_timeout)
    await run_migrations(pool)
    cache = init_cache(ttl=config.report_cache_ttl)
    worker = LotteryWorker(
        attempts=args.attempts or config.lottery_attempts,
        progress_batch=config.lottery_progress_batch,
        commit_timeout=config.lottery_commit_timeout,
        commit_retries=config.lottery_commit_retries,
        cache=cache,
    )
    manager = LotteryJobManager(worker, cache=cache)

    try:
        policy = LotteryPolicy(
            grade_order=GradeOrder(args.grade_order) if args.grade_order else None,
            seed=args.seed,
        )
        job_id = await manager.start(args.admin, args.event, policy)
        logger.info(f"Started lottery job {job_id}")
        await worker.stop()
        status = await manager.status(job_id)
    except ApplicationError as e:
        logger.error(f"Lottery could not run: {e}")
        return 1
    finally:
        await close_db_pool()

    if status.status is not JobStatus.COMPLETED:
        logger.error(f"Lottery job {job_id} failed: {status.error}")
        return 1

    stats = LotteryReportDatabase(database_path).rank_distribution(job_id)
    if args.json:
        print(json.dumps({"status": status.to_dict(), "statistics": stats}, indent=2))
    else:
        print(f"Job {job_id} completed with seed {status.seed}")
        print(f"  placed:      {stats['placed']} of {stats['total_students']}")
        for rank, count in stats["by_rank"].items():
            if count:
                print(f"  choice {rank:>3}: {count}")
        print(f"  prefill:     {stats['prefill']}")
        print(f"  manual:      {stats['manual']}")
        print(f"  not placed:  {stats['not_placed']}")
        print(f"  no choices:  {stats['no_choices']}")
    return 0


def main(argv=None) -> int:
    args = parse_args(argv)
    setup_logger(name="", level=logging.INFO)
    return asyncio.run(run(args))


if __name__ == "__main__":
    sys.exit(main())
