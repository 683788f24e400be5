"""Paced, best-effort batched upserts.

Each chunk is one upsert call. A failing chunk is logged and skipped; the rest
still go through. Callers rely on upsert idempotency (a later resync fills the
gap) rather than on all-or-nothing writes.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Protocol, Sequence, TypeVar

from wabridge.infra.store import UpsertStore
from wabridge.observability.logging import get_logger
from wabridge.observability.redaction import safe_log_context

logger = get_logger(__name__)


class Record(Protocol):
    def to_row(self) -> dict[str, Any]:
        ...


R = TypeVar("R", bound=Record)


@dataclass
class BatchResult:
    collection: str
    total: int = 0
    written: int = 0
    failed_offsets: list[int] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed_offsets


async def upsert_in_batches(
    store: UpsertStore,
    collection: str,
    records: Sequence[R],
    *,
    batch_size: int,
    pause_seconds: float,
    on_conflict: str = "id",
) -> BatchResult:
    """Upsert records in contiguous, order-preserving chunks.

    Args:
        store: Target store.
        collection: Collection name (e.g. "messages").
        records: Records exposing ``to_row()``.
        batch_size: Records per upsert call.
        pause_seconds: Sleep between chunks (not after the last one). The
            sleep is also where live events get a turn on the event loop.
        on_conflict: Natural key column.

    Returns:
        BatchResult with counts and the starting offsets of failed chunks.

    Raises:
        ValueError: If batch_size is not positive.
    """
    if batch_size <= 0:
        raise ValueError("batch_size must be positive")

    result = BatchResult(collection=collection, total=len(records))

    for offset in range(0, len(records), batch_size):
        if offset:
            await asyncio.sleep(pause_seconds)

        chunk = records[offset:offset + batch_size]
        try:
            await store.upsert(collection, [r.to_row() for r in chunk], on_conflict=on_conflict)
        except Exception as exc:
            result.failed_offsets.append(offset)
            logger.error(
                "batch upsert failed",
                extra={
                    "extra_fields": safe_log_context(
                        collection=collection,
                        offset=offset,
                        size=len(chunk),
                        error=str(exc),
                    )
                },
            )
            continue

        result.written += len(chunk)

    logger.info(
        "batched upsert finished",
        extra={
            "extra_fields": safe_log_context(
                collection=collection,
                total=result.total,
                written=result.written,
                failed_batches=len(result.failed_offsets),
            )
        },
    )
    return result
