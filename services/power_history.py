"""Historical excess power windows derived from stored PV readings."""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import List, Optional

from models.records import Interval, QueryRange, Verdict
from services.decision import PolicyHolder, decide
from services.intervals import coalesce
from storage.base import ReadingSource

logger = logging.getLogger(__name__)


class PowerHistoryReporter:
    """Turns stored readings into Yes/Maybe/No windows."""

    def __init__(
        self,
        source: ReadingSource,
        policy: PolicyHolder,
        max_span: Optional[timedelta] = None,
    ) -> None:
        self.source = source
        self.policy = policy
        self.max_span = max_span

    async def query_excess_intervals(self, query: QueryRange) -> List[Interval[Verdict]]:
        """Coalesced verdict intervals for ``query``, the last one closed at ``query.end``.

        Raises ``InvalidRange`` for spans wider than ``max_span`` and lets
        ``StorageUnavailable`` from the reading source propagate.
        """
        query.check_span(self.max_span)
        readings = await self.source.fetch_readings(query.start, query.end)
        policy = self.policy.current
        intervals = list(
            coalesce(
                ((reading.timestamp, decide(reading, policy)) for reading in readings),
                bound=query.end,
            )
        )
        logger.debug(
            "Computed excess power history",
            extra={
                "range_start": query.start,
                "range_end": query.end,
                "interval_count": len(intervals),
            },
        )
        return intervals
