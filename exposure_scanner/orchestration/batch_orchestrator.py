import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional
from pydantic import BaseModel, Field

from config.settings import Settings
from ..aggregation import SensitivityAggregator
from ..classification import SensitivityClassifier
from ..discovery import SchemaAdapter, SchemaSource, normalize_app_url
from ..errors import InvalidTargetError, SampleFetchError, SchemaParseError
from ..models import RecordCount, SensitivityLabel, Table, TableSensitivity
from ..sampling import DataAccessClient, Sampler
from ..session import ScanPhase, ScanSession

logger = logging.getLogger(__name__)

UpdateCallback = Callable[[ScanSession], None]


class ColumnView(BaseModel):
    name: str
    type: str
    sensitivity: SensitivityLabel
    overridden: bool = False


class TableView(BaseModel):
    """A table opened for inspection: its rows and effective column labels"""
    table: Table
    rows: List[Dict[str, Any]] = Field(default_factory=list)
    record_count: RecordCount
    columns: List[ColumnView] = Field(default_factory=list)
    sensitivity: TableSensitivity


def batched(items: List[Table], size: int) -> List[List[Table]]:
    return [items[i:i + size] for i in range(0, len(items), size)]


class ScanOrchestrator:
    """
        Drives a scan: schema discovery, record counts for every table, then
        sampling and classification of the tables with data in fixed-size
        concurrent batches.

        Only one session is active. Starting a new scan supersedes the old
        one, and results that arrive for a superseded session are dropped.
    """
    def __init__(
        self,
        schema_source: SchemaSource,
        data_client: DataAccessClient,
        classifier: SensitivityClassifier,
        aggregator: SensitivityAggregator,
        settings: Settings,
        schema_adapter: Optional[SchemaAdapter] = None,
        on_update: Optional[UpdateCallback] = None
    ):
        self.schema_source = schema_source
        self.data_client = data_client
        self.classifier = classifier
        self.aggregator = aggregator
        self.settings = settings
        self.schema_adapter = schema_adapter or SchemaAdapter()
        self.on_update = on_update
        self.active_session: Optional[ScanSession] = None

    def sampler_for(self, session: ScanSession) -> Sampler:
        return Sampler(self.data_client, session.app_name, self.settings)

    def is_current(self, session: ScanSession) -> bool:
        return self.active_session is not None and self.active_session.session_id == session.session_id

    async def start_scan(self, app_url: str) -> ScanSession:
        """
            Run a full scan of the target app. Terminal failures mark the
            session failed and are re-raised.
        """
        session = ScanSession(app_url=(app_url or "").strip())
        self.active_session = session
        logger.info(f"Starting scan {session.session_id} for {session.app_url}")

        try:
            session.app_url = normalize_app_url(app_url)
            self._set_phase(session, ScanPhase.SCHEMA_LOADING)

            session.app_name = await self.schema_source.fetch_app_name(session.app_url)
            schema_text = await self.schema_source.fetch_schema(session.app_url)
            tables = self.schema_adapter.parse(schema_text)

        except (InvalidTargetError, SchemaParseError) as e:
            if self.is_current(session):
                session.fail(f"Scan failed: {e}")
                logger.error(session.error_message)
                self._publish(session)
            raise

        if not self.is_current(session):
            logger.info(f"Scan {session.session_id} superseded during schema discovery")
            return session

        session.add_tables(tables)
        self._set_phase(session, ScanPhase.TABLE_LIST_READY)

        await self.fetch_counts(session)
        if not self.is_current(session):
            return session

        await self.run_sensitivity_scan(session)
        return session

    async def fetch_counts(self, session: ScanSession):
        """Count records of every table at once, no batch limit"""
        sampler = self.sampler_for(session)
        tables = list(session.tables.values())
        logger.info(f"Counting records for {len(tables)} tables")

        results = await asyncio.gather(*(sampler.count(table) for table in tables))

        if not self.is_current(session):
            logger.info(f"Discarding counts for superseded scan {session.session_id}")
            return

        for table, result in zip(tables, results):
            table.record_count = result.record_count
            table.metadata_only = result.metadata_only
        self._publish(session)

    async def run_sensitivity_scan(self, session: ScanSession):
        """
            Classify the tables with real data in batches. Members of a batch
            run concurrently, batches run one after another, and the summary
            is refreshed after every batch.
        """
        candidates = session.classification_candidates()
        batches = batched(candidates, self.settings.CLASSIFICATION_BATCH_SIZE)
        session.batches_total = len(batches)
        session.batches_completed = 0
        self._set_phase(session, ScanPhase.SENSITIVITY_SCANNING)

        for table in session.tables.values():
            self.aggregator.refresh_table(session, table.id)

        logger.info(f"Classifying {len(candidates)} tables in {len(batches)} batches")
        sampler = self.sampler_for(session)

        for number, batch in enumerate(batches, start=1):
            outcomes = await asyncio.gather(
                *(self._scan_table(session, sampler, table) for table in batch),
                return_exceptions=True
            )
            if not self.is_current(session):
                logger.info(f"Discarding batch {number} of superseded scan {session.session_id}")
                return

            for table, outcome in zip(batch, outcomes):
                if isinstance(outcome, Exception):
                    logger.error(f"Unexpected failure scanning '{table.id}': {outcome}")
                    session.table_errors[table.id] = str(outcome)

            summary = await self.aggregator.build_exposure_summary(session)
            if not self.is_current(session):
                logger.info(f"Discarding summary of superseded scan {session.session_id}")
                return
            session.exposure_summary = summary

            session.batches_completed = number
            logger.info(f"Batch {number}/{len(batches)} complete")
            self._publish(session)

        self._set_phase(session, ScanPhase.COMPLETE)
        logger.info(f"Scan {session.session_id} complete: {len(session.table_sensitivity)} tables rolled up")

    async def _scan_table(self, session: ScanSession, sampler: Sampler, table: Table):
        """Sample and classify one table. Failures only degrade this table."""
        try:
            sample = await sampler.fetch_rows(table, self.settings.CLASSIFICATION_SAMPLE_SIZE)
        except SampleFetchError as e:
            logger.warning(f"Sampling failed for '{table.id}': {e}")
            if self.is_current(session):
                session.table_errors[table.id] = str(e)
            return

        if not self.is_current(session):
            return

        result = await self.classifier.classify(table, sample.rows, session.classification_cache)

        if not self.is_current(session):
            return
        self._record_classification(session, table.id, result)

    async def open_table(self, table_id: str) -> TableView:
        """
            Fetch the large sample of a table for viewing. Classification
            comes from the session cache and is only requested if missing.
        """
        session = self._require_session()
        table = session.get_table(table_id)
        sampler = self.sampler_for(session)

        sample = await sampler.fetch_rows(table, self.settings.COUNT_PAGE_SIZE)
        if self.is_current(session):
            table.merge_row_columns(sample.rows)
            result = await self.classifier.classify(table, sample.rows, session.classification_cache)
            if self.is_current(session):
                self._record_classification(session, table.id, result)

        return self._table_view(session, table, sample.rows, sample.record_count)

    def set_override(self, table_id: str, column: str, label: SensitivityLabel) -> TableSensitivity:
        session = self._require_session()
        rollup = self.aggregator.set_override(session, table_id, column, label)
        self._publish(session)
        return rollup

    def get_effective_sensitivity(self, table_id: str, column: str) -> SensitivityLabel:
        return self.aggregator.get_effective_sensitivity(self._require_session(), table_id, column)

    def refresh(self, table_id: Optional[str] = None):
        """
            Invalidate cached classifications (one table or all) so the next
            view re-classifies. Rollups fall back to overrides only until then.
        """
        session = self._require_session()
        session.classification_cache.invalidate(table_id)

        table_ids = [table_id] if table_id is not None else list(session.tables)
        for refreshed_id in table_ids:
            if refreshed_id not in session.tables:
                continue
            session.table_errors.pop(refreshed_id, None)
            self.aggregator.refresh_table(session, refreshed_id)
        self._publish(session)

    async def refresh_summary(self):
        session = self._require_session()
        summary = await self.aggregator.build_exposure_summary(session)
        if self.is_current(session):
            session.exposure_summary = summary
            self._publish(session)

    def _table_view(self, session: ScanSession, table: Table, rows: List[Dict[str, Any]], record_count: RecordCount) -> TableView:
        columns = [
            ColumnView(
                name=column.name,
                type=column.type,
                sensitivity=self.aggregator.get_effective_sensitivity(session, table.id, column.name),
                overridden=session.overrides.get(table.id, column.name) is not None,
            )
            for column in table.columns
        ]
        rollup = session.table_sensitivity.get(table.id) or self.aggregator.refresh_table(session, table.id)
        return TableView(table=table, rows=rows, record_count=record_count, columns=columns, sensitivity=rollup)

    def _record_classification(self, session: ScanSession, table_id: str, result: Optional[Dict[str, SensitivityLabel]]):
        if result is None:
            session.table_errors[table_id] = "Classification unavailable"
        else:
            session.table_errors.pop(table_id, None)
        self.aggregator.refresh_table(session, table_id)

    def _require_session(self) -> ScanSession:
        if self.active_session is None:
            raise RuntimeError("No scan has been started")
        return self.active_session

    def _set_phase(self, session: ScanSession, phase: ScanPhase):
        if not self.is_current(session):
            return
        session.phase = phase
        logger.info(f"Scan {session.session_id}: {phase.value}")
        self._publish(session)

    def _publish(self, session: ScanSession):
        if self.on_update is None or not self.is_current(session):
            return
        try:
            self.on_update(session)
        except Exception as e:
            logger.error(f"Update callback failed: {e}")
