"""Generic bounded-parallel batch processor with index-stable outcomes."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import TYPE_CHECKING, TypeVar

import structlog

from bulkops.core.errors import RemoteError
from bulkops.models.batch_result import RecordOutcome
from bulkops.utils.progress import ProgressTracker

if TYPE_CHECKING:
    import threading
    from collections.abc import Callable, Sequence

logger = structlog.get_logger(__name__)

T = TypeVar("T")

CANCELLED = "Cancelled"


def _run_one(
    index: int,
    item: T,
    process_fn: Callable[[int, T], RecordOutcome],
    cancel_event: threading.Event | None,
) -> RecordOutcome:
    """Run process_fn for one item, turning any exception into a failure outcome."""
    if cancel_event is not None and cancel_event.is_set():
        return RecordOutcome.failure(index, CANCELLED, "batch cancelled before dispatch")
    try:
        return process_fn(index, item)
    except RemoteError as exc:
        return RecordOutcome.failure(
            index,
            "RemoteError",
            exc.message,
            error_code=exc.error_code,
        )
    except Exception as exc:
        return RecordOutcome.failure(index, type(exc).__name__, str(exc))


def process_batch(
    items: Sequence[T],
    process_fn: Callable[[int, T], RecordOutcome],
    max_workers: int,
    cancel_event: threading.Event | None = None,
    label: str = "batch",
    progress_every: int = 10,
) -> list[RecordOutcome]:
    """Process items with at most max_workers concurrent calls.

    process_fn receives (index, item). The returned list holds exactly one
    outcome per item, at the item's input index, whatever order the calls
    complete in. A failing item never stops its siblings. Once cancel_event
    is set, items not yet started are recorded as Cancelled without calling
    process_fn; calls already running finish normally.
    """
    if max_workers < 1:
        msg = "max_workers must be at least 1"
        raise ValueError(msg)
    if not items:
        return []

    tracker = ProgressTracker(total=len(items), label=label)
    outcomes: list[RecordOutcome | None] = [None] * len(items)

    with ThreadPoolExecutor(max_workers=min(max_workers, len(items))) as executor:
        futures = {
            executor.submit(_run_one, index, item, process_fn, cancel_event): index
            for index, item in enumerate(items)
        }

        for future in as_completed(futures):
            index = futures[future]
            outcome = future.result()
            outcomes[index] = outcome
            if outcome.succeeded:
                tracker.record_success()
            else:
                tracker.record_failure(f"#{index} {outcome.error_type}: {outcome.error_message}")
                if outcome.error_type != CANCELLED:
                    logger.error(
                        "batch_item_failed",
                        label=label,
                        index=index,
                        error_type=outcome.error_type,
                        error_code=outcome.error_code,
                        error=outcome.error_message,
                    )

            tracker.log_progress(every_n=progress_every)

    return [outcome for outcome in outcomes if outcome is not None]
