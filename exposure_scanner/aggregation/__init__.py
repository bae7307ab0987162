from .override_store import OverrideStore
from .aggregator import (
    SensitivityAggregator,
    compute_table_sensitivity,
    effective_sensitivity,
    is_sample_table,
)

__all__ = [
    "OverrideStore",
    "SensitivityAggregator",
    "compute_table_sensitivity",
    "effective_sensitivity",
    "is_sample_table",
]
