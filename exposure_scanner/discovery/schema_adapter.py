import logging
import re
from typing import Dict, List, Optional, Sequence

from ..errors import SchemaParseError
from ..models import Column, Table

logger = logging.getLogger(__name__)

# Characters the schema service injects into identifiers
ARTIFACT_CHARS = "%"

_COLUMN_LINE = re.compile(
    r'^\s*(?:"(?P<quoted>[^"]+)"|(?P<bare>[%\w.\-]+))\s+(?P<type>"[^"]+"|[^\s\[]+)'
)
_NON_COLUMN_KEYWORDS = {"note", "indexes", "ref"}


def clean_identifier(raw_name: str) -> str:
    """Strip artifact characters and surrounding whitespace"""
    return raw_name.translate({ord(ch): None for ch in ARTIFACT_CHARS}).strip()


def humanize(identifier: str) -> str:
    """'order_items' -> 'Order items'"""
    if not identifier:
        return identifier
    return identifier[0].upper() + identifier[1:].replace("_", " ")


class SchemaAdapter:
    """
        Turns a DBML-style schema description into a list of tables.

        Each table block starts with one of the table markers followed by a
        name and an opening brace, and ends at the first closing brace.
        Blocks that never close, or whose name cleans to nothing, are skipped
        so that one bad fragment does not hide the well-formed tables.
    """
    def __init__(self, table_markers: Sequence[str] = ("Table",)):
        if not table_markers:
            raise ValueError("At least one table marker is required")
        self.table_markers = tuple(table_markers)
        markers = "|".join(re.escape(marker) for marker in self.table_markers)
        self._open_re = re.compile(
            rf'(?<![\w%])(?:{markers})\s+'
            r'(?:"(?P<quoted>[^"]*)"|(?P<bare>%?[\w%.\-]+))'
            r'(?:\s+as\s+[\w"]+)?\s*(?:\[[^\]\n]*\]\s*)?\{'
        )

    def parse(self, schema_text: str, include_columns: bool = False) -> List[Table]:
        """
            Extract de-duplicated tables. Raises SchemaParseError when none are found.
        """
        if not schema_text or not schema_text.strip():
            raise SchemaParseError("Schema description is empty")

        openings = list(self._open_re.finditer(schema_text))
        tables: Dict[str, Table] = {}
        skipped = 0

        for index, match in enumerate(openings):
            block_limit = openings[index + 1].start() if index + 1 < len(openings) else len(schema_text)
            close = schema_text.find("}", match.end(), block_limit)
            if close == -1:
                skipped += 1
                logger.warning(f"Skipping unterminated table block at offset {match.start()}")
                continue

            raw_name = match.group("quoted") if match.group("quoted") is not None else match.group("bare")
            table_id = clean_identifier(raw_name)
            if not table_id:
                skipped += 1
                logger.warning(f"Skipping table block with empty name at offset {match.start()}")
                continue

            table = tables.get(table_id)
            if table is None:
                table = Table(id=table_id, display_name=humanize(table_id))
                tables[table_id] = table

            if include_columns:
                for column in self._parse_columns(schema_text[match.end():close]):
                    table.add_column(column.name, column.type)

        if not tables:
            raise SchemaParseError("No data tables found in this app")

        logger.info(f"Discovered {len(tables)} tables ({skipped} malformed blocks skipped)")
        return list(tables.values())

    def _parse_columns(self, body: str) -> List[Column]:
        columns = []
        for line in body.splitlines():
            stripped = line.strip()
            if not stripped or stripped.startswith("//"):
                continue
            column = self._parse_column_line(stripped)
            if column:
                columns.append(column)
        return columns

    def _parse_column_line(self, line: str) -> Optional[Column]:
        match = _COLUMN_LINE.match(line)
        if not match:
            return None
        name = match.group("quoted") or match.group("bare")
        if name.lower() in _NON_COLUMN_KEYWORDS:
            return None
        return Column(name=name, type=match.group("type").strip('"'))
