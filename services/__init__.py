"""Services package."""

from .lottery import SecureLottery
from .cache import ReportCache, init_cache, get_cache
from .async_runner import set_main_loop, run_coroutine_sync
from .engine import AssignmentEngine, AssignmentOutcome, LotterySnapshot

__all__ = [
    "SecureLottery",
    "ReportCache",
    "init_cache",
    "get_cache",
    "set_main_loop",
    "run_coroutine_sync",
    "AssignmentEngine",
    "AssignmentOutcome",
    "LotterySnapshot",
]
