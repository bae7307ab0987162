from .schema_adapter import SchemaAdapter, clean_identifier, humanize
from .schema_source import SchemaSource, normalize_app_url, app_name_from_host

__all__ = [
    "SchemaAdapter",
    "SchemaSource",
    "clean_identifier",
    "humanize",
    "normalize_app_url",
    "app_name_from_host",
]
