"""
Typed results for best-effort consistency steps.

Secondary writes (pivot sync, counter adjustment, dual-write records,
blob deletion, pruning) must never fail the primary operation. Instead
of catching and logging in place, each step runs through
SyncReport.attempt(), which logs the failure, records it as a SyncError
and hands back a StepResult the caller can inspect.

Typical usage:
    report = SyncReport("tag_sync")
    result = await report.attempt("create_pivot", pivots.insert_one(doc), target=name)
    if result.ok:
        ...
    return report
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Dict, Generic, List, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class SyncError:
    """One failed best-effort step."""
    step: str
    message: str
    target: Optional[str] = None
    exception: Optional[BaseException] = field(default=None, repr=False, compare=False)

    def to_dict(self) -> Dict[str, Any]:
        return {"step": self.step, "target": self.target, "message": self.message}


@dataclass
class StepResult(Generic[T]):
    """Either a value or a SyncError, never both."""
    value: Optional[T] = None
    error: Optional[SyncError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: Optional[T] = None) -> "StepResult[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: SyncError) -> "StepResult[T]":
        return cls(error=error)


@dataclass
class SyncReport:
    """Aggregate of every step attempted for one logical operation."""
    operation: str
    steps: List[StepResult] = field(default_factory=list)
    summary: Dict[str, Any] = field(default_factory=dict)

    async def attempt(self, step: str, awaitable: Awaitable[T],
                      target: Optional[str] = None) -> StepResult[T]:
        """Await a best-effort step and record its outcome.

        Exceptions are logged at WARNING and recorded; they never propagate.
        """
        try:
            value = await awaitable
        except Exception as e:
            logger.warning(f"{self.operation}: step '{step}' failed for {target or '-'}: {e}")
            result: StepResult[T] = StepResult.failure(
                SyncError(step=step, message=str(e), target=target, exception=e)
            )
        else:
            result = StepResult.success(value)
        self.steps.append(result)
        return result

    def record(self, step: str, message: str, target: Optional[str] = None) -> StepResult:
        """Record a failure that was detected without an exception."""
        logger.warning(f"{self.operation}: step '{step}' failed for {target or '-'}: {message}")
        result: StepResult = StepResult.failure(SyncError(step=step, message=message, target=target))
        self.steps.append(result)
        return result

    def merge(self, other: "SyncReport") -> "SyncReport":
        """Fold another report's steps into this one."""
        self.steps.extend(other.steps)
        return self

    @property
    def ok(self) -> bool:
        return all(step.ok for step in self.steps)

    @property
    def failures(self) -> List[SyncError]:
        return [step.error for step in self.steps if step.error is not None]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "operation": self.operation,
            "ok": self.ok,
            "attempted": len(self.steps),
            "summary": dict(self.summary),
            "errors": [e.to_dict() for e in self.failures],
        }
