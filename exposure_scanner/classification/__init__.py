from .cache import ClassificationCache
from .classifier import SensitivityClassifier, ClassificationOutput
from .payload import extract_json_payload
from .samples import build_column_samples, stringify_value

__all__ = [
    "ClassificationCache",
    "SensitivityClassifier",
    "ClassificationOutput",
    "extract_json_payload",
    "build_column_samples",
    "stringify_value",
]
