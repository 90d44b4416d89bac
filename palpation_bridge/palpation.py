"""Palpation session: per-region force/pain accumulation and flush-to-backend."""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any, Dict, Optional, Set

from .backend.http_client import ApiResult
from .config import Settings
from .state import CompletionPolicy, RegionMeasurement

logger = logging.getLogger(__name__)

ResultSink = Callable[[str, Dict[str, Any]], Awaitable[ApiResult]]
Snapshot = Dict[str, Dict[str, Optional[int]]]


class PalpationSession:
    """Owns the region mapping for one examination pass.

    Force readings arrive from the device and pain readings from clients.
    Each stream has its own cursor: a force reading fills the region under
    the force cursor, a pain reading fills the region under the pain cursor
    (which must already hold a force value). Under the reset policy the
    cursors count up through R1, R2, ... and the mapping grows; under the
    circular policy the mapping is a fixed set of regions and the cursors
    wrap around it.

    A flush hands a snapshot of the mapping to ``result_sink`` together with
    the active patient id, then starts over with an empty mapping. The post
    runs as a background task; ``wait_for_posts`` awaits the pending ones.
    Failed posts are logged; the data is not kept.
    """

    def __init__(
        self,
        *,
        policy: CompletionPolicy = CompletionPolicy.RESET,
        region_count: int = 4,
        region_prefix: str = "R",
        patient_id: Optional[str] = None,
        result_sink: Optional[ResultSink] = None,
    ) -> None:
        if region_count < 1:
            raise ValueError("region_count must be at least 1")
        self.policy = CompletionPolicy(policy)
        self.region_count = region_count
        self.region_prefix = region_prefix
        self.patient_id = patient_id
        self._result_sink = result_sink
        self._lock = asyncio.Lock()
        self._pending_posts: Set[asyncio.Task[None]] = set()
        self._regions: Dict[str, RegionMeasurement] = {}
        self._force_cursor = 0
        self._pain_cursor = 0
        self._reset_regions()

    @classmethod
    def from_settings(cls, settings: Settings, result_sink: Optional[ResultSink] = None) -> "PalpationSession":
        cfg = settings.palpation
        return cls(
            policy=CompletionPolicy(cfg.completion_policy),
            region_count=cfg.region_count,
            region_prefix=cfg.region_prefix,
            patient_id=cfg.patient_id,
            result_sink=result_sink,
        )

    @property
    def cursor(self) -> int:
        """Zero-based index of the region the next force reading fills."""
        return self._force_cursor

    @property
    def pain_cursor(self) -> int:
        return self._pain_cursor

    def select_patient(self, patient_id: str) -> None:
        if patient_id != self.patient_id:
            logger.info("Active patient set: %s", patient_id)
        self.patient_id = patient_id

    def snapshot(self) -> Snapshot:
        return {key: region.to_dict() for key, region in self._regions.items()}

    def has_data(self) -> bool:
        return any(r.force is not None or r.pain is not None for r in self._regions.values())

    def is_complete(self) -> bool:
        """True when at least one region is tracked and every tracked region has a force value."""
        return bool(self._regions) and all(r.force is not None for r in self._regions.values())

    async def on_force_reading(self, value: int) -> str:
        async with self._lock:
            key = self._key(self._force_cursor)
            region = self._regions.setdefault(key, RegionMeasurement())
            region.force = value
            self._force_cursor = self._advance(self._force_cursor)
            logger.info("Force %d recorded for %s", value, key)

            pending: Optional[Snapshot] = None
            if self.policy is CompletionPolicy.CIRCULAR and self.is_complete():
                logger.info("All %d regions have force readings", self.region_count)
                pending = self._drain()

        if pending is not None:
            self._flush(pending)
        return key

    async def on_pain_reading(self, value: int) -> Optional[str]:
        """Record pain for the region under the pain cursor; None if it has no force yet."""
        async with self._lock:
            key = self._key(self._pain_cursor)
            region = self._regions.get(key)
            if region is None or region.force is None:
                logger.warning("Pain %d dropped: no force reading recorded for %s", value, key)
                return None
            region.pain = value
            self._pain_cursor = self._advance(self._pain_cursor)
            logger.info("Updated %s: %s", key, region.to_dict())
            return key

    async def on_reset_signal(self) -> bool:
        """Flush accumulated data, if any. Returns True when a post was scheduled."""
        async with self._lock:
            pending = self._drain() if self.has_data() else None

        if pending is None:
            logger.info("Device reset (no palpation data to flush)")
            return False
        self._flush(pending)
        logger.info("Device reset")
        return True

    def _key(self, index: int) -> str:
        return f"{self.region_prefix}{index + 1}"

    def _advance(self, index: int) -> int:
        if self.policy is CompletionPolicy.CIRCULAR:
            return (index + 1) % self.region_count
        return index + 1

    def _reset_regions(self) -> None:
        if self.policy is CompletionPolicy.CIRCULAR:
            self._regions = {self._key(i): RegionMeasurement() for i in range(self.region_count)}
        else:
            self._regions = {}
        self._force_cursor = 0
        self._pain_cursor = 0

    def _drain(self) -> Snapshot:
        # caller holds the lock
        snapshot = self.snapshot()
        self._reset_regions()
        return snapshot

    @property
    def pending_posts(self) -> int:
        return len(self._pending_posts)

    async def wait_for_posts(self) -> None:
        """Wait until every scheduled post has finished."""
        while self._pending_posts:
            await asyncio.gather(*list(self._pending_posts), return_exceptions=True)

    def _flush(self, snapshot: Snapshot) -> None:
        patient_id = self.patient_id
        logger.info("Final palpation data for patient %s: %s", patient_id, snapshot)
        if self._result_sink is None:
            logger.error("No result sink configured; palpation data dropped")
            return
        if not patient_id:
            logger.error("No active patient; palpation data dropped")
            return
        task = asyncio.create_task(self._post(patient_id, snapshot), name=f"palpation-post-{patient_id}")
        self._pending_posts.add(task)
        task.add_done_callback(self._post_done)

    async def _post(self, patient_id: str, snapshot: Snapshot) -> None:
        result = await self._result_sink(patient_id, snapshot)
        if not result.ok:
            logger.error("Error posting palpation data for patient %s: %s", patient_id, result.error)

    def _post_done(self, task: asyncio.Task[None]) -> None:
        self._pending_posts.discard(task)
        if task.cancelled():
            logger.warning("Palpation post cancelled: %s", task.get_name())
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Error posting palpation data: %s", exc, exc_info=exc)


__all__ = ["PalpationSession", "ResultSink", "Snapshot"]
