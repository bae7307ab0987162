"""
    Error taxonomy for a scan session.

    SchemaParseError and InvalidTargetError are terminal for the scan. The
    per-table errors (SampleFetchError, ClassificationError) and
    AggregationError are caught at the task boundary and only degrade the
    affected table or the cross-table summary.
"""
from typing import Optional


class ScannerError(Exception):
    """Base class for all scanner errors"""


class ScanConfigurationError(ScannerError):
    """Required settings are missing"""


class InvalidTargetError(ScannerError):
    """The target application address is empty or not a URL"""


class SchemaParseError(ScannerError):
    """Schema discovery produced no tables (or the schema could not be fetched)"""


class SampleFetchError(ScannerError):
    """A table sample could not be fetched from the data-access service"""

    def __init__(self, message: str, table_id: Optional[str] = None):
        super().__init__(message)
        self.table_id = table_id


class ClassificationError(ScannerError):
    """The classification oracle failed or returned an unparsable payload"""


class AggregationError(ScannerError):
    """The prioritization oracle failed or returned an unusable ranking"""
