"""
Medlink Triage - Triage Report Sink

Receives a TriageReport every time a snapshot is produced. The core
never reads reports back; retrieval methods exist for the HTTP adapter
and for tests.

The in-memory sink is bounded and ephemeral (lost on restart).
"""

from __future__ import annotations

import logging
from abc import abstractmethod
from collections import Counter
from threading import Lock
from typing import Dict, List, Protocol, runtime_checkable

from medlink.config import Settings
from medlink.core.types import TriageReport

logger = logging.getLogger(__name__)


# =============================================================================
# Protocol
# =============================================================================

@runtime_checkable
class TriageReportSink(Protocol):
    """
    Protocol for triage report persistence.

    Implementations must be safe to call from concurrent calls.
    """

    @abstractmethod
    async def record(self, report: TriageReport) -> None:
        """Store one report."""
        ...

    @abstractmethod
    async def get_recent(self, limit: int = 100) -> List[TriageReport]:
        """Most recent reports, newest first."""
        ...

    @abstractmethod
    async def get_for_call(self, call_id: str) -> List[TriageReport]:
        """Reports for one call, newest first."""
        ...

    @abstractmethod
    async def clear(self) -> None:
        ...


# =============================================================================
# In-Memory Implementation
# =============================================================================

class InMemoryTriageReportSink:
    """
    Bounded in-memory report store.

    Oldest reports are dropped once max_reports is exceeded.
    """

    def __init__(self, max_reports: int = 10000):
        self._max_reports = max_reports
        self._lock = Lock()
        self._reports: List[TriageReport] = []

        logger.info("InMemoryTriageReportSink initialized: max_reports=%d", max_reports)

    async def record(self, report: TriageReport) -> None:
        with self._lock:
            self._reports.append(report)

            if len(self._reports) > self._max_reports:
                excess = len(self._reports) - self._max_reports
                self._reports = self._reports[excess:]
                logger.debug("Trimmed %d old reports", excess)

    async def get_recent(self, limit: int = 100) -> List[TriageReport]:
        with self._lock:
            return list(reversed(self._reports[-limit:]))

    async def get_for_call(self, call_id: str) -> List[TriageReport]:
        with self._lock:
            return [r for r in reversed(self._reports) if r.call_id == call_id]

    async def tier_counts(self) -> Dict[str, int]:
        """Number of stored reports per tier."""
        with self._lock:
            return dict(Counter(r.tier.value for r in self._reports))

    async def clear(self) -> None:
        with self._lock:
            count = len(self._reports)
            self._reports = []
        logger.info("Cleared %d reports", count)


# =============================================================================
# No-Op Implementation
# =============================================================================

class NoOpTriageReportSink:
    """Sink used when report persistence is disabled."""

    async def record(self, report: TriageReport) -> None:
        pass

    async def get_recent(self, limit: int = 100) -> List[TriageReport]:
        return []

    async def get_for_call(self, call_id: str) -> List[TriageReport]:
        return []

    async def clear(self) -> None:
        pass


# =============================================================================
# Factory
# =============================================================================

def create_report_sink(settings: Settings) -> TriageReportSink:
    """Create a report sink based on settings."""
    if not settings.enable_report_sink:
        logger.info("Report sink disabled, using no-op sink")
        return NoOpTriageReportSink()

    return InMemoryTriageReportSink(max_reports=settings.report_sink_max_reports)
