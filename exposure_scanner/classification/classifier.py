import json
import logging
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field, field_validator
from langfuse import observe
from langfuse import Langfuse

from config.settings import Settings
from ..errors import ClassificationError
from ..models import ColumnSensitivity, SensitivityLabel, Table, RESERVED_KEYS
from ..openai_client import OpenAIClient
from .cache import ClassificationCache
from .payload import extract_json_payload
from .samples import build_column_samples

logger = logging.getLogger(__name__)

_LABEL_ALIASES = {"medium": "moderate", "none": "low", "": "low"}


class FieldSensitivity(BaseModel):
    name: str
    sensitivity: SensitivityLabel

    @field_validator("sensitivity", mode="before")
    @classmethod
    def _normalize_label(cls, value: Any) -> Any:
        if isinstance(value, str):
            value = value.strip().lower()
            return _LABEL_ALIASES.get(value, value)
        return value


class ClassificationOutput(BaseModel):
    """Structured payload expected from the classification oracle"""
    fields: List[FieldSensitivity] = Field(default_factory=list)


SYSTEM_PROMPT = (
    "You are a data privacy expert. You classify database columns by how "
    "sensitive the personal or business information they hold is. "
    "Respond only with JSON."
)


class SensitivityClassifier:
    """
        Labels the columns of a table as low, moderate or high sensitivity
        using the classification oracle, one request per table.
    """
    def __init__(self, openai_client: OpenAIClient, settings: Settings):
        self.openai_client = openai_client
        self.settings = settings

        self.langfuse = Langfuse(
            public_key=settings.LANGFUSE_PUBLIC_KEY,
            secret_key=settings.LANGFUSE_SECRET_KEY,
            host=settings.LANGFUSE_HOST
        ) if settings.enable_langfuse else None

    async def classify(
        self,
        table: Table,
        rows: List[Dict[str, Any]],
        cache: ClassificationCache
    ) -> Optional[ColumnSensitivity]:
        """
            Cached classification of a table's columns.

            The oracle is called at most once per table until the cache entry
            is invalidated. A failed call leaves the table without an entry
            and returns None.
        """
        cached = cache.get(table.id)
        if cached is not None:
            return cached

        async with cache.lock_for(table.id):
            cached = cache.get(table.id)
            if cached is not None:
                return cached
            if cache.has_failed(table.id):
                logger.info(f"Skipping classification for '{table.id}', it already failed this session")
                return None

            table.merge_row_columns(rows)
            columns = [name for name in table.column_names if name not in RESERVED_KEYS]
            samples = build_column_samples(
                rows,
                columns,
                max_values=self.settings.MAX_SAMPLE_VALUES,
                max_length=self.settings.MAX_SAMPLE_LENGTH
            )

            try:
                result = await self.classify_columns(table.id, columns, samples)
            except ClassificationError as e:
                logger.error(f"Classification failed for table '{table.id}': {e}")
                cache.mark_failed(table.id, str(e))
                return None

            cache.store(table.id, result)
            return cache.get(table.id)

    @observe(name="classifier_classify_columns", as_type="span")
    async def classify_columns(
        self,
        table_id: str,
        columns: List[str],
        samples_by_column: Dict[str, List[str]]
    ) -> ColumnSensitivity:
        """
            Ask the oracle for a label per column. Columns missing from the
            reply are left out of the result (implicitly low).
        """
        columns = [col for col in columns if col not in RESERVED_KEYS]
        if not columns:
            logger.info(f"Table '{table_id}' has no data columns to classify")
            return {}

        logger.info(f"Classifying {len(columns)} columns for table '{table_id}'")

        if self.langfuse:
            self.langfuse.update_current_span(
                input={"table": table_id, "column_count": len(columns)}
            )

        messages = [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": self._build_prompt(table_id, columns, samples_by_column)}
        ]

        try:
            reply = await self.openai_client.generate_completion(
                messages=messages,
                temperature=0.0,
                response_format={"type": "json_object"}
            )
        except Exception as e:
            raise ClassificationError(f"Classification oracle call failed: {e}") from e

        try:
            output = ClassificationOutput.model_validate(extract_json_payload(reply))
        except ValueError as e:
            raise ClassificationError(f"Unparsable classification response: {e}") from e

        requested = set(columns)
        result = {
            field.name: field.sensitivity
            for field in output.fields
            if field.name in requested
        }

        flagged = {name: label.value for name, label in result.items() if label != SensitivityLabel.LOW}
        logger.info(f"Table '{table_id}': {len(flagged)} sensitive columns {flagged}")

        if self.langfuse:
            self.langfuse.update_current_span(output={"flagged": flagged})

        return result

    def _build_prompt(self, table_id: str, columns: List[str], samples_by_column: Dict[str, List[str]]) -> str:
        column_lines = []
        for column in columns:
            values = samples_by_column.get(column) or []
            sample_str = ", ".join(json.dumps(value) for value in values) if values else "No samples"
            column_lines.append(f"- {column}: {sample_str}")

        return f"""Classify how sensitive each column of this table is.

                Table: {table_id}
                Columns with example values:
                {chr(10).join(column_lines)}

                Sensitivity levels:
                - high: directly identifies or exposes a person or secret (emails, phone numbers, names, addresses, government ids, payment data, passwords, tokens, precise location, health data)
                - moderate: personal or business data that is revealing in combination (birth dates, demographics, order history, internal notes, pricing, IP addresses)
                - low: everything else

                Respond with JSON of the form:
                {{"fields": [{{"name": "<column name>", "sensitivity": "low|moderate|high"}}]}}
                Only include columns that are moderate or high.
            """
