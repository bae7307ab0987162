import asyncio
import logging
from typing import Dict, Optional

from ..models import ColumnSensitivity

logger = logging.getLogger(__name__)


class ClassificationCache:
    """
        Session-scoped classifier results keyed by table id.

        Failed classifications are remembered as well: nothing is retried
        within a session unless the entry is invalidated.
    """
    def __init__(self):
        self.results: Dict[str, ColumnSensitivity] = {}
        self.failures: Dict[str, str] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def get(self, table_id: str) -> Optional[ColumnSensitivity]:
        return self.results.get(table_id)

    def has_failed(self, table_id: str) -> bool:
        return table_id in self.failures

    def lock_for(self, table_id: str) -> asyncio.Lock:
        if table_id not in self._locks:
            self._locks[table_id] = asyncio.Lock()
        return self._locks[table_id]

    def store(self, table_id: str, result: ColumnSensitivity):
        self.results[table_id] = dict(result)
        self.failures.pop(table_id, None)

    def mark_failed(self, table_id: str, reason: str):
        self.failures[table_id] = reason

    def invalidate(self, table_id: Optional[str] = None):
        """Drop one table's entry, or everything when no table is given"""
        if table_id is None:
            logger.info(f"Invalidating {len(self.results)} cached classifications")
            self.results.clear()
            self.failures.clear()
            return
        self.results.pop(table_id, None)
        self.failures.pop(table_id, None)
