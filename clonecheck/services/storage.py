"""
Analysis storage.

The store treats each analysis as an opaque, already-validated document.
Concurrent readers never share state with the store: every record handed
out is a deep copy, and lists are freshly sorted newest-first.
"""

from __future__ import annotations

import asyncio
import itertools
from datetime import datetime, timezone
from typing import Any, Optional

from clonecheck.models.schemas import SCHEMA_VERSION_ENHANCED, AnalysisRecord
from clonecheck.utils.logger import get_logger

logger = get_logger(__name__)


class AnalysisStorage:
    """Interface for analysis storage backends."""

    async def create(
        self,
        user_id: str,
        url: str,
        analysis: dict[str, Any],
        goal: Optional[str] = None,
        schema_version: int = SCHEMA_VERSION_ENHANCED,
    ) -> AnalysisRecord:
        raise NotImplementedError

    async def get(self, user_id: str, analysis_id: str) -> Optional[AnalysisRecord]:
        raise NotImplementedError

    async def list(self, user_id: str) -> list[AnalysisRecord]:
        raise NotImplementedError

    async def update(self, user_id: str, analysis_id: str, changes: dict[str, Any]) -> Optional[AnalysisRecord]:
        raise NotImplementedError

    async def delete(self, user_id: str, analysis_id: str) -> bool:
        raise NotImplementedError


class AnalysisStore(AnalysisStorage):
    """In-memory storage keyed by user."""

    UPDATABLE_FIELDS = frozenset({"url", "goal", "analysis", "schema_version"})

    def __init__(self):
        self._records: dict[str, dict[str, AnalysisRecord]] = {}
        self._order: dict[str, int] = {}
        self._counter = itertools.count()
        self._lock = asyncio.Lock()

    async def create(
        self,
        user_id: str,
        url: str,
        analysis: dict[str, Any],
        goal: Optional[str] = None,
        schema_version: int = SCHEMA_VERSION_ENHANCED,
    ) -> AnalysisRecord:
        record = AnalysisRecord(
            user_id=user_id,
            url=url,
            goal=goal,
            schema_version=schema_version,
            analysis=analysis,
        ).model_copy(deep=True)

        async with self._lock:
            self._records.setdefault(user_id, {})[record.id] = record
            self._order[record.id] = next(self._counter)

        logger.info("Analysis stored", analysis_id=record.id, user_id=user_id, schema_version=schema_version)
        return record.model_copy(deep=True)

    async def get(self, user_id: str, analysis_id: str) -> Optional[AnalysisRecord]:
        async with self._lock:
            record = self._records.get(user_id, {}).get(analysis_id)
            return record.model_copy(deep=True) if record else None

    async def list(self, user_id: str) -> list[AnalysisRecord]:
        """All of a user's analyses, newest first."""
        async with self._lock:
            records = sorted(
                self._records.get(user_id, {}).values(),
                key=lambda r: (r.created_at, self._order[r.id]),
                reverse=True,
            )
            return [record.model_copy(deep=True) for record in records]

    async def update(self, user_id: str, analysis_id: str, changes: dict[str, Any]) -> Optional[AnalysisRecord]:
        """
        Apply ``changes`` to a stored record and stamp ``updated_at``.

        Returns None when the record does not exist.
        """
        unknown = set(changes) - self.UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update fields: {', '.join(sorted(unknown))}")

        async with self._lock:
            user_records = self._records.get(user_id, {})
            record = user_records.get(analysis_id)
            if record is None:
                return None
            updated = record.model_copy(
                update={**changes, "updated_at": datetime.now(timezone.utc)},
                deep=True,
            )
            user_records[analysis_id] = updated.model_copy(deep=True)

        logger.info("Analysis updated", analysis_id=analysis_id, fields=sorted(changes))
        return updated

    async def delete(self, user_id: str, analysis_id: str) -> bool:
        async with self._lock:
            removed = self._records.get(user_id, {}).pop(analysis_id, None)
            self._order.pop(analysis_id, None)
        return removed is not None


__all__ = ["AnalysisStorage", "AnalysisStore"]
