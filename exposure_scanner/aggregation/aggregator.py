import json
import logging
import re
from typing import Any, Dict, Iterable, List, Optional, TYPE_CHECKING
from pydantic import BaseModel, Field
from langfuse import observe
from langfuse import Langfuse

from config.settings import Settings
from ..classification.payload import extract_json_payload
from ..errors import AggregationError
from ..models import (
    ColumnSensitivity,
    ExposureSummary,
    RankedTable,
    SensitivityLabel,
    TableSensitivity,
    RESERVED_KEYS,
)
from ..openai_client import OpenAIClient

if TYPE_CHECKING:
    from ..session import ScanSession

logger = logging.getLogger(__name__)

# Tables that only hold fixtures are kept out of the exposure ranking
_SAMPLE_TABLE_RE = re.compile(r"(^|[_\-\s])(test|tests|testing|sample|samples|dummy|demo)([_\-\s]|$)", re.IGNORECASE)


def is_sample_table(table_id: str) -> bool:
    return bool(_SAMPLE_TABLE_RE.search(table_id))


def effective_sensitivity(
    column: str,
    classified: ColumnSensitivity,
    overrides: ColumnSensitivity
) -> SensitivityLabel:
    """Override if present, else classifier label, else low"""
    if column in overrides:
        return overrides[column]
    return classified.get(column, SensitivityLabel.LOW)


def compute_table_sensitivity(
    columns: Iterable[str],
    classified: ColumnSensitivity,
    overrides: ColumnSensitivity
) -> TableSensitivity:
    """
        Rollup of a table: level is the max effective label over all known
        columns, contributing columns are the non-low ones (most severe first,
        column order otherwise).
    """
    names: List[str] = []
    for name in list(columns) + list(classified) + list(overrides):
        if name not in RESERVED_KEYS and name not in names:
            names.append(name)

    effective = {name: effective_sensitivity(name, classified, overrides) for name in names}
    contributing = sorted(
        (name for name in names if effective[name] != SensitivityLabel.LOW),
        key=lambda name: -effective[name].rank
    )
    return TableSensitivity(
        level=SensitivityLabel.highest(effective.values()),
        contributing_columns=contributing
    )


class PrioritizationOutput(BaseModel):
    """Structured payload expected from the prioritization oracle"""
    risk: str = ""
    tables: List[RankedTable] = Field(default_factory=list)


SYSTEM_PROMPT = (
    "You are a security analyst reviewing data exposed by a web application's "
    "public data API. Rank the exposures by how damaging they would be. "
    "Respond only with JSON."
)


class SensitivityAggregator:
    """
        Merges classifier output with manual overrides into table rollups and
        builds the cross-table exposure summary.
    """
    def __init__(self, openai_client: OpenAIClient, settings: Settings):
        self.openai_client = openai_client
        self.settings = settings

        self.langfuse = Langfuse(
            public_key=settings.LANGFUSE_PUBLIC_KEY,
            secret_key=settings.LANGFUSE_SECRET_KEY,
            host=settings.LANGFUSE_HOST
        ) if settings.enable_langfuse else None

    def set_override(
        self,
        session: "ScanSession",
        table_id: str,
        column: str,
        label: SensitivityLabel
    ) -> TableSensitivity:
        """Record a manual decision and recompute that table's rollup"""
        if table_id not in session.tables:
            raise KeyError(f"Unknown table: {table_id}")
        session.overrides.set(table_id, column, label)
        return self.refresh_table(session, table_id)

    def get_effective_sensitivity(self, session: "ScanSession", table_id: str, column: str) -> SensitivityLabel:
        classified = session.classification_cache.get(table_id) or {}
        return effective_sensitivity(column, classified, session.overrides.for_table(table_id))

    def refresh_table(self, session: "ScanSession", table_id: str) -> TableSensitivity:
        """Recompute and store the rollup for one table"""
        table = session.tables[table_id]
        rollup = compute_table_sensitivity(
            table.column_names,
            session.classification_cache.get(table_id) or {},
            session.overrides.for_table(table_id)
        )
        session.table_sensitivity[table_id] = rollup
        table.sensitivity = rollup
        return rollup

    def exposure_candidates(self, session: "ScanSession") -> List[Dict[str, Any]]:
        """
            Tables with confirmed data and at least one high column. Sample
            and test tables are left out.
        """
        candidates = []
        for table in session.tables.values():
            if not table.has_real_data or is_sample_table(table.id):
                continue

            rollup = session.table_sensitivity.get(table.id) or self.refresh_table(session, table.id)
            labels = {
                name: self.get_effective_sensitivity(session, table.id, name)
                for name in rollup.contributing_columns
            }
            high = [name for name, label in labels.items() if label == SensitivityLabel.HIGH]
            if not high:
                continue

            candidates.append({
                "name": table.id,
                "display_name": table.display_name,
                "record_count": table.record_count.display,
                "high_columns": high,
                "moderate_columns": [name for name, label in labels.items() if label == SensitivityLabel.MODERATE],
            })
        return candidates

    async def build_exposure_summary(self, session: "ScanSession") -> Optional[ExposureSummary]:
        """
            Ranked summary of the most exposed tables, or None when there is
            nothing to rank or the ranking failed.
        """
        candidates = self.exposure_candidates(session)
        if not candidates:
            logger.info("No high-sensitivity tables with data, no exposure summary")
            return None

        try:
            return await self.rank_exposures(candidates)
        except AggregationError as e:
            logger.error(f"Exposure summary suppressed: {e}")
            return None

    @observe(name="aggregator_rank_exposures", as_type="span")
    async def rank_exposures(self, candidates: List[Dict[str, Any]]) -> ExposureSummary:
        """Ask the prioritization oracle to rank candidate tables"""
        logger.info(f"Ranking {len(candidates)} exposure candidates")

        if self.langfuse:
            self.langfuse.update_current_span(input={"candidate_count": len(candidates)})

        messages = [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": self._build_prompt(candidates)}
        ]

        try:
            reply = await self.openai_client.generate_completion(
                messages=messages,
                temperature=0.0,
                response_format={"type": "json_object"}
            )
        except Exception as e:
            raise AggregationError(f"Prioritization oracle call failed: {e}") from e

        try:
            output = PrioritizationOutput.model_validate(extract_json_payload(reply))
        except ValueError as e:
            raise AggregationError(f"Unparsable prioritization response: {e}") from e

        known = {}
        for candidate in candidates:
            known[candidate["name"].lower()] = candidate["name"]
            known[candidate["display_name"].lower()] = candidate["name"]

        ranked: List[RankedTable] = []
        for entry in output.tables:
            name = known.get(entry.name.lower())
            if name is None or any(existing.name == name for existing in ranked):
                logger.warning(f"Ignoring ranked table not among candidates: {entry.name}")
                continue
            ranked.append(RankedTable(name=name, columns=entry.columns[:self.settings.SUMMARY_MAX_COLUMNS]))
            if len(ranked) >= self.settings.SUMMARY_MAX_TABLES:
                break

        if not ranked:
            raise AggregationError("Prioritization oracle returned no ranked tables")

        if self.langfuse:
            self.langfuse.update_current_span(output={"risk": output.risk, "tables": [t.name for t in ranked]})

        return ExposureSummary(risk=output.risk, tables=ranked)

    def _build_prompt(self, candidates: List[Dict[str, Any]]) -> str:
        return f"""These tables can be read through the application's data API without restriction.

                Exposed tables (name, record count, sensitive columns):
                {json.dumps(candidates, indent=2)}

                Your task:
                1. Give an overall risk rating for the application (critical, high, moderate or low)
                2. Rank the {self.settings.SUMMARY_MAX_TABLES} most damaging tables, most damaging first
                3. For each ranked table list up to {self.settings.SUMMARY_MAX_COLUMNS} of its most sensitive columns

                Respond with JSON of the form:
                {{"risk": "<rating>", "tables": [{{"name": "<table name>", "columns": ["<column>", ...]}}]}}
            """
