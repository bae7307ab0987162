from .data_access_client import DataAccessClient
from .result_adapter import ResultAdapter
from .sampler import Sampler, SampleBatch, CountResult, table_type_qualifier, is_error_envelope

__all__ = [
    "DataAccessClient",
    "ResultAdapter",
    "Sampler",
    "SampleBatch",
    "CountResult",
    "table_type_qualifier",
    "is_error_envelope",
]
