from .errors import (
    ScannerError,
    SchemaParseError,
    SampleFetchError,
    ClassificationError,
    AggregationError,
    InvalidTargetError,
    ScanConfigurationError,
)
from .session import ScanSession, ScanPhase

__all__ = [
    "ScannerError",
    "SchemaParseError",
    "SampleFetchError",
    "ClassificationError",
    "AggregationError",
    "InvalidTargetError",
    "ScanConfigurationError",
    "ScanSession",
    "ScanPhase",
]
