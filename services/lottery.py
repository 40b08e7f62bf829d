"""Secure seed generation for reproducible lottery runs."""

from __future__ import annotations

import hashlib
import os
from datetime import datetime, timezone
from typing import Optional

from core import get_logger, LotteryDefaults

logger = get_logger(__name__)


class SecureLottery:
    """Produce the integer seed a lottery job is fixed to.

    The seed comes from SHA-256 over a timestamp and OS randomness, folded
    down to a non-negative 63-bit integer so it fits a SQLite INTEGER column
    and can be typed back in to replay a run.
    """

    def __init__(self) -> None:
        self.seed: Optional[int] = None
        self._random_bytes_size = LotteryDefaults.SEED_RANDOM_BYTES

    def generate_seed(self) -> int:
        """Generate a fresh seed.

        Returns:
            int: seed in ``[0, 2**63)``
        """
        timestamp = datetime.now(timezone.utc).isoformat()
        random_bytes = os.urandom(self._random_bytes_size)
        digest = hashlib.sha256(f"{timestamp}{random_bytes.hex()}".encode()).hexdigest()
        self.seed = int(digest, 16) >> (256 - LotteryDefaults.SEED_BITS)

        logger.info(f"Generated new lottery seed: {self.seed}")
        return self.seed

    def resolve_seed(self, pinned: Optional[int] = None) -> int:
        """Use the caller's pinned seed when given, otherwise a fresh one."""
        if pinned is None:
            return self.generate_seed()
        if pinned < 0 or pinned >= 2 ** LotteryDefaults.SEED_BITS:
            raise ValueError(f"Seed must be in [0, 2**{LotteryDefaults.SEED_BITS})")
        self.seed = pinned
        return self.seed
