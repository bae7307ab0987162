import json
from typing import Any, Dict, List, Optional, Sequence

from ..models import RESERVED_KEYS

ELLIPSIS = "..."


def stringify_value(value: Any) -> Optional[str]:
    """Display form of a sampled value, None for values that carry nothing"""
    if value is None:
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return json.dumps(value, default=str)
    text = str(value)
    return text if text.strip() else None


def truncate(text: str, max_length: int) -> str:
    if len(text) <= max_length:
        return text
    return text[:max_length] + ELLIPSIS


def build_column_samples(
    rows: Sequence[Dict[str, Any]],
    columns: Sequence[str],
    max_values: int = 3,
    max_length: int = 100
) -> Dict[str, List[str]]:
    """
        Up to `max_values` distinct, non-empty example values per column, in
        row order. Reserved metadata keys are left out.
    """
    samples: Dict[str, List[str]] = {}
    for column in columns:
        if column in RESERVED_KEYS:
            continue

        values: List[str] = []
        for row in rows:
            text = stringify_value(row.get(column))
            if text is None:
                continue
            text = truncate(text, max_length)
            if text in values:
                continue
            values.append(text)
            if len(values) >= max_values:
                break
        samples[column] = values
    return samples
