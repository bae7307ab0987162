import logging
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field

from config.settings import Settings
from ..errors import SampleFetchError
from ..models import RecordCount, Table, RESERVED_KEYS
from .data_access_client import DataAccessClient
from .result_adapter import ResultAdapter, Row

logger = logging.getLogger(__name__)

# The built-in user table has a fixed type; every other table is a custom type
USER_TABLE_TYPE = "user"
CUSTOM_TYPE_PREFIX = "custom."


def table_type_qualifier(table_id: str) -> str:
    if table_id.lower() == USER_TABLE_TYPE:
        return USER_TABLE_TYPE
    return f"{CUSTOM_TYPE_PREFIX}{table_id}"


def is_error_envelope(envelope: Any) -> bool:
    if not isinstance(envelope, dict):
        return False
    status = envelope.get("status")
    if isinstance(status, int) and status >= 400:
        return True
    return "error" in envelope


def is_metadata_only(rows: List[Row]) -> bool:
    """True when there are rows and none of them has a non-reserved key"""
    return bool(rows) and all(
        all(key in RESERVED_KEYS for key in row) for row in rows
    )


class SampleBatch(BaseModel):
    rows: List[Dict[str, Any]] = Field(default_factory=list)
    at_end: Optional[bool] = None
    record_count: RecordCount


class CountResult(BaseModel):
    record_count: RecordCount
    metadata_only: bool = False


class Sampler:
    """
        Fetches bounded samples of a table through the data-access service.
    """
    def __init__(
        self,
        data_client: DataAccessClient,
        app_name: str,
        settings: Settings,
        result_adapter: Optional[ResultAdapter] = None
    ):
        self.data_client = data_client
        self.app_name = app_name
        self.settings = settings
        self.result_adapter = result_adapter or ResultAdapter()

    async def sample(self, table: Table, size: int) -> Dict[str, Any]:
        """Raw response envelope for up to `size` rows. Raises SampleFetchError on transport failure."""
        try:
            return await self.data_client.search(
                app_name=self.app_name,
                type_qualifier=table_type_qualifier(table.id),
                page_size=size,
                offset=0,
            )
        except SampleFetchError as e:
            e.table_id = table.id
            raise

    async def fetch_rows(self, table: Table, size: int) -> SampleBatch:
        """
            Normalized rows for a table. An error-status envelope raises
            SampleFetchError, since there is nothing to inspect.
        """
        envelope = await self.sample(table, size)
        if is_error_envelope(envelope):
            body = envelope.get("body") if isinstance(envelope.get("body"), dict) else {}
            message = body.get("message") or envelope.get("error") or "API request failed"
            raise SampleFetchError(f"Failed to fetch data for '{table.id}': {message}", table_id=table.id)

        rows = self.result_adapter.normalize(envelope)
        at_end = self.result_adapter.at_end(envelope)
        return SampleBatch(
            rows=rows,
            at_end=at_end,
            record_count=RecordCount.from_hits(len(rows), at_end, self.settings.RESULT_CAP),
        )

    async def count(self, table: Table) -> CountResult:
        """
            Record count for the table list. Never raises: failures become an
            unknown count so one table cannot abort the listing.
        """
        try:
            envelope = await self.sample(table, self.settings.COUNT_PAGE_SIZE)

            if is_error_envelope(envelope):
                logger.info(f"Table '{table.id}' answered with an error status")
                return CountResult(record_count=RecordCount.error())

            rows = self.result_adapter.normalize(envelope)
            at_end = self.result_adapter.at_end(envelope)

        except Exception as e:
            logger.warning(f"Count failed for table '{table.id}': {e}")
            return CountResult(record_count=RecordCount.unknown())

        record_count = RecordCount.from_hits(len(rows), at_end, self.settings.RESULT_CAP)
        return CountResult(record_count=record_count, metadata_only=is_metadata_only(rows))
