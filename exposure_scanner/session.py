from enum import Enum
from typing import Dict, List, Optional
from pydantic import BaseModel, Field
from uuid import UUID, uuid4
from datetime import datetime

from .aggregation.override_store import OverrideStore
from .classification.cache import ClassificationCache
from .models import ColumnSensitivity, ExposureSummary, Table, TableSensitivity


class ScanPhase(str, Enum):
    IDLE = "idle"
    SCHEMA_LOADING = "schema_loading"
    TABLE_LIST_READY = "table_list_ready"
    SENSITIVITY_SCANNING = "sensitivity_scanning"
    COMPLETE = "complete"
    FAILED = "failed"


class ScanSession(BaseModel):
    """
        All state of one scan of one target application.

        A new scan creates a new session; work tagged with an older
        session_id is discarded by the orchestrator.
    """
    session_id: UUID = Field(default_factory=uuid4)
    app_url: str = ""
    app_name: Optional[str] = None
    started_at: datetime = Field(default_factory=datetime.now)
    phase: ScanPhase = ScanPhase.IDLE
    error_message: Optional[str] = None

    # Discovery
    tables: Dict[str, Table] = Field(default_factory=dict)   # table id -> Table

    # Sensitivity state
    classification_cache: ClassificationCache = Field(default_factory=ClassificationCache)
    overrides: OverrideStore = Field(default_factory=OverrideStore)
    table_sensitivity: Dict[str, TableSensitivity] = Field(default_factory=dict)
    exposure_summary: Optional[ExposureSummary] = None

    # Per-table degradations, table id -> message
    table_errors: Dict[str, str] = Field(default_factory=dict)

    # Progress
    batches_total: int = 0
    batches_completed: int = 0

    class Config:
        arbitrary_types_allowed = True

    @property
    def column_sensitivity(self) -> Dict[str, ColumnSensitivity]:
        return self.classification_cache.results

    def add_tables(self, tables: List[Table]):
        for table in tables:
            self.tables.setdefault(table.id, table)

    def get_table(self, table_id: str) -> Table:
        table = self.tables.get(table_id)
        if table is None:
            raise KeyError(f"Unknown table: {table_id}")
        return table

    def sorted_tables(self) -> List[Table]:
        """Tables ordered by display name, case-insensitive"""
        return sorted(self.tables.values(), key=lambda table: table.display_name.lower())

    def classification_candidates(self) -> List[Table]:
        """Tables confirmed to hold real (not metadata-only) records"""
        return [table for table in self.sorted_tables() if table.has_real_data]

    def fail(self, message: str):
        self.phase = ScanPhase.FAILED
        self.error_message = message
