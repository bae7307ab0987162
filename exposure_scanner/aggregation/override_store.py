import logging
from typing import Dict, Optional

from ..models import ColumnSensitivity, SensitivityLabel

logger = logging.getLogger(__name__)


class OverrideStore:
    """
        Manual sensitivity decisions per table and column. Entries only ever
        come from explicit user action and stay for the whole session.
    """
    def __init__(self):
        self._overrides: Dict[str, ColumnSensitivity] = {}

    def set(self, table_id: str, column: str, label: SensitivityLabel) -> bool:
        """Record an override. Returns False when the same value was already set."""
        label = SensitivityLabel(label)
        table_overrides = self._overrides.setdefault(table_id, {})
        if table_overrides.get(column) == label:
            return False
        table_overrides[column] = label
        logger.info(f"Override set: {table_id}.{column} = {label.value}")
        return True

    def get(self, table_id: str, column: str) -> Optional[SensitivityLabel]:
        return self._overrides.get(table_id, {}).get(column)

    def for_table(self, table_id: str) -> ColumnSensitivity:
        return dict(self._overrides.get(table_id, {}))
