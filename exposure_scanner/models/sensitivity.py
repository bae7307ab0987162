from enum import Enum
from typing import Dict, List, Iterable
from pydantic import BaseModel, Field


class SensitivityLabel(str, Enum):
    """Privacy risk of a column. LOW is the implicit default."""
    LOW = "low"
    MODERATE = "moderate"
    HIGH = "high"

    @property
    def rank(self) -> int:
        return _RANKS[self]

    @classmethod
    def highest(cls, labels: Iterable["SensitivityLabel"]) -> "SensitivityLabel":
        """Max over labels with high > moderate > low; LOW for an empty input"""
        return max(labels, key=lambda label: label.rank, default=cls.LOW)


_RANKS = {
    SensitivityLabel.LOW: 0,
    SensitivityLabel.MODERATE: 1,
    SensitivityLabel.HIGH: 2,
}

# column name -> label, for a single table
ColumnSensitivity = Dict[str, SensitivityLabel]


class TableSensitivity(BaseModel):
    """
        Rollup of a table's columns. Derived from classifier output and
        manual overrides, never edited directly.
    """
    level: SensitivityLabel = SensitivityLabel.LOW
    contributing_columns: List[str] = Field(default_factory=list)   # non-low columns, most severe first

    @property
    def is_sensitive(self) -> bool:
        return self.level != SensitivityLabel.LOW
