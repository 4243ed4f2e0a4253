"""Session State: counters and timers for one run of the engine."""

import time
from dataclasses import dataclass, field
from typing import List, Optional


@dataclass
class SessionState:
    """
    Process-wide counters, mutated only by the thread running the cycles.

    A failed cycle increments fail_count and never its kind's counter;
    attempts counts every cycle the scheduler started.
    """
    mint_count: int = 0
    melt_count: int = 0
    swap_count: int = 0
    fail_count: int = 0
    attempts: int = 0
    start_time: float = field(default_factory=time.time)

    def record_success(self, kind: str) -> None:
        if kind == "mint":
            self.mint_count += 1
        elif kind == "melt":
            self.melt_count += 1
        elif kind == "swap":
            self.swap_count += 1
        else:
            raise ValueError(f"Unknown cycle kind: {kind}")

    def record_failure(self) -> None:
        self.fail_count += 1

    def record_attempt(self) -> None:
        self.attempts += 1

    @property
    def total_completed(self) -> int:
        return self.mint_count + self.melt_count + self.swap_count

    def elapsed(self, now: Optional[float] = None) -> int:
        now = time.time() if now is None else now
        return max(0, int(now - self.start_time))

    def format_runtime(self, now: Optional[float] = None) -> str:
        elapsed = self.elapsed(now)
        hours, rem = divmod(elapsed, 3600)
        mins, secs = divmod(rem, 60)
        return f"{hours}h {mins}m {secs}s"

    def summary_lines(self, balance: int, unit: str, now: Optional[float] = None) -> List[str]:
        return [
            "========== SESSION SUMMARY ==========",
            f"Runtime: {self.format_runtime(now)}",
            f"Mints:  {self.mint_count}",
            f"Melts:  {self.melt_count}",
            f"Swaps:  {self.swap_count}",
            f"Fails:  {self.fail_count}",
            f"Total:  {self.total_completed}",
            f"Final balance: {balance} {unit}",
            "====================================",
        ]

    def to_dict(self) -> dict:
        return {
            "mints": self.mint_count,
            "melts": self.melt_count,
            "swaps": self.swap_count,
            "fails": self.fail_count,
            "attempts": self.attempts,
            "total": self.total_completed,
            "elapsed_seconds": self.elapsed(),
        }
