from typing import Optional, List, Iterable
from pydantic import BaseModel, Field

from .record_count import RecordCount
from .sensitivity import TableSensitivity

# Keys attached to every row by the data-access service; never data columns
RESERVED_KEYS = ("_id", "_type", "_version")


class Column(BaseModel):
    """
        A column of a discovered table.
    """
    name: str
    type: str = "unknown"


class Table(BaseModel):
    """
        A data table discovered in the target application.

        Identity (id) is fixed for the scan; counts and sensitivity are
        attached as they become available.
    """
    id: str                 # canonical identifier, artifacts stripped
    display_name: str
    columns: List[Column] = Field(default_factory=list)
    record_count: Optional[RecordCount] = None
    metadata_only: bool = False
    sensitivity: Optional[TableSensitivity] = None

    @property
    def column_names(self) -> List[str]:
        return [col.name for col in self.columns]

    @property
    def has_real_data(self) -> bool:
        """Confirmed records that carry more than reserved metadata"""
        return bool(self.record_count and self.record_count.has_data and not self.metadata_only)

    def get_column(self, name: str) -> Optional[Column]:
        return next((col for col in self.columns if col.name == name), None)

    def add_column(self, name: str, type: str = "unknown") -> bool:
        """Append a column unless it exists or is reserved. Returns True if added."""
        if name in RESERVED_KEYS or self.get_column(name):
            return False
        self.columns.append(Column(name=name, type=type))
        return True

    def merge_row_columns(self, rows: Iterable[dict]) -> List[str]:
        """Append columns seen in sampled rows but missing from the schema"""
        added = []
        for row in rows:
            for key in row:
                if self.add_column(key):
                    added.append(key)
        return added
