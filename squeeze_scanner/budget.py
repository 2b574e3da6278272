"""
Wall-clock budget for the bounded "run everything now" mode.

The full pass loops {add chunk -> export} while time remains, then always
performs one last export.
"""
from dataclasses import dataclass
from typing import Any, Callable
import time
import logging

logger = logging.getLogger(__name__)


@dataclass
class BudgetSummary:
    """Summary of budget usage when a bounded pass completes or is stopped."""
    iterations: int
    elapsed_seconds: float
    timeout_seconds: float
    exceeded: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "iterations": self.iterations,
            "elapsed_seconds": round(self.elapsed_seconds, 2),
            "timeout_seconds": self.timeout_seconds,
            "exceeded": self.exceeded,
        }

    def format_message(self) -> str:
        if not self.exceeded:
            return f"Completed within budget: {self.iterations} chunks, {self.elapsed_seconds:.1f}s elapsed"
        return f"Budget spent: stopped after {self.iterations} chunks at {self.timeout_seconds}s"


class RunBudget:
    """
    Tracks elapsed wall-clock time for a bounded pass.

    Usage:
        budget = RunBudget(timeout_seconds=300)
        while budget.can_continue():
            ...
            budget.record_iteration()
    """

    DEFAULT_TIMEOUT_SECONDS = 300.0

    def __init__(
        self,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.timeout_seconds = timeout_seconds
        self._clock = clock
        self._start_time = clock()
        self._iterations = 0

    @property
    def iterations(self) -> int:
        return self._iterations

    @property
    def elapsed_seconds(self) -> float:
        return self._clock() - self._start_time

    @property
    def remaining_seconds(self) -> float:
        return max(0.0, self.timeout_seconds - self.elapsed_seconds)

    def record_iteration(self) -> None:
        self._iterations += 1
        logger.debug(
            f"RunBudget: iteration {self._iterations}, "
            f"{self.elapsed_seconds:.1f}/{self.timeout_seconds}s elapsed"
        )

    def is_exceeded(self) -> bool:
        return self.elapsed_seconds >= self.timeout_seconds

    def can_continue(self) -> bool:
        """Check BEFORE starting another iteration."""
        return not self.is_exceeded()

    def get_summary(self) -> BudgetSummary:
        return BudgetSummary(
            iterations=self._iterations,
            elapsed_seconds=self.elapsed_seconds,
            timeout_seconds=self.timeout_seconds,
            exceeded=self.is_exceeded(),
        )

    def __repr__(self) -> str:
        return (
            f"RunBudget(iterations={self._iterations}, "
            f"elapsed={self.elapsed_seconds:.1f}/{self.timeout_seconds}s)"
        )
