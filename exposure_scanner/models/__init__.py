from .record_count import RecordCount, CountStatus
from .sensitivity import SensitivityLabel, ColumnSensitivity, TableSensitivity
from .table import Column, Table, RESERVED_KEYS
from .summary import RankedTable, ExposureSummary

__all__ = [
    "RecordCount",
    "CountStatus",
    "SensitivityLabel",
    "ColumnSensitivity",
    "TableSensitivity",
    "Column",
    "Table",
    "RESERVED_KEYS",
    "RankedTable",
    "ExposureSummary",
]
