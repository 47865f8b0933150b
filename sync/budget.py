# © 2025 Experience Community Church. All Rights Reserved.
# Licensed exclusively for use by Experience Community Church (Murfreesboro, TN).
# Unauthorized use, distribution, or modification is prohibited.

import time
from typing import Callable


class ExecutionBudget:
    """Wall-clock allowance for one run, checked between units of work"""

    def __init__(self, limit_seconds: float, clock: Callable[[], float] = time.monotonic):
        self.limit_seconds = limit_seconds
        self.clock = clock
        self.started_at = clock()

    def elapsed(self) -> float:
        return self.clock() - self.started_at

    def remaining(self) -> float:
        return self.limit_seconds - self.elapsed()

    def exhausted(self, reserve: float = 0.0) -> bool:
        """True once less than ``reserve`` seconds are left"""
        return self.remaining() <= reserve
