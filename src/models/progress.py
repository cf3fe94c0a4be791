"""
Run progress data models.

Per-run state, progress snapshots, terminal results and the cooperative
cancellation token.
"""

import threading
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional

from src.models.insight import CategoryInsights, category_insights_to_dict


class RunStatus(str, Enum):
    """Orchestrator state machine."""
    IDLE = "idle"
    UPLOADING = "uploading"
    BATCHING = "batching"
    EXECUTING_BATCH = "executing_batch"
    RATE_LIMITED_RETRY = "rate_limited_retry"
    INTERMEDIATE_CONSOLIDATION = "intermediate_consolidation"
    FINAL_CONSOLIDATION = "final_consolidation"
    COMPLETE = "complete"
    ABORTED = "aborted"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (RunStatus.COMPLETE, RunStatus.ABORTED, RunStatus.FAILED)


@dataclass(frozen=True)
class ProcessingUpdate:
    """
    Progress snapshot emitted to the progress sink.

    Every update carries cumulative counters; consumers treat each one as a
    full snapshot, never as a delta.
    """
    current_batch: int
    total_batches: int
    status: str
    state: RunStatus = RunStatus.IDLE
    tokens_used: Optional[int] = None
    estimated_cost: Optional[float] = None
    reviews_processed: Optional[int] = None
    total_reviews: Optional[int] = None

    def to_dict(self) -> dict:
        """Convert to JSON-serializable dict (camelCase wire keys)."""
        data = {
            "currentBatch": self.current_batch,
            "totalBatches": self.total_batches,
            "status": self.status,
            "state": self.state.value
        }
        optional = {
            "tokensUsed": self.tokens_used,
            "estimatedCost": self.estimated_cost,
            "reviewsProcessed": self.reviews_processed,
            "totalReviews": self.total_reviews
        }
        data.update({k: v for k, v in optional.items() if v is not None})
        return data


ProgressSink = Callable[[ProcessingUpdate], None]


class CancellationToken:
    """
    Cooperative cancellation flag.

    Checked by the orchestrator at batch, chunk and category boundaries.
    An in-flight completion call is never interrupted.
    """

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()


@dataclass
class RunContext:
    """
    Mutable state owned by exactly one pipeline run.
    """
    run_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    total_reviews: int = 0
    total_batches: int = 0
    current_batch: int = 0
    reviews_processed: int = 0
    tokens_used: int = 0
    cost: float = 0.0
    status: RunStatus = RunStatus.IDLE
    accumulated: CategoryInsights = field(default_factory=dict)
    pending: List[CategoryInsights] = field(default_factory=list)  # Batch results not yet merged
    failed_batches: List[int] = field(default_factory=list)  # 1-based batch numbers
    next_batch_index: int = 0  # Resume point for checkpoints

    def add_usage(self, tokens: int, cost: float) -> None:
        self.tokens_used += tokens
        self.cost += cost

    def snapshot(self, message: str) -> ProcessingUpdate:
        return ProcessingUpdate(
            current_batch=self.current_batch,
            total_batches=self.total_batches,
            status=message,
            state=self.status,
            tokens_used=self.tokens_used,
            estimated_cost=self.cost,
            reviews_processed=self.reviews_processed,
            total_reviews=self.total_reviews
        )


@dataclass
class RunResult:
    """Terminal outcome of a pipeline run. Always carries the insights gathered so far."""
    run_id: str
    status: RunStatus
    insights: CategoryInsights
    tokens_used: int = 0
    cost: float = 0.0
    reviews_processed: int = 0
    total_reviews: int = 0
    total_batches: int = 0
    failed_batches: List[int] = field(default_factory=list)
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "run_id": self.run_id,
            "status": self.status.value,
            "insights": category_insights_to_dict(self.insights),
            "tokens_used": self.tokens_used,
            "cost": self.cost,
            "reviews_processed": self.reviews_processed,
            "total_reviews": self.total_reviews,
            "total_batches": self.total_batches,
            "failed_batches": list(self.failed_batches),
            "error": self.error
        }
