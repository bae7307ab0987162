"""
Tests for scan orchestration: phases, batching, concurrency and supersession
"""

import asyncio
import json

import httpx
import pytest

from exposure_scanner.aggregation import SensitivityAggregator
from exposure_scanner.classification import SensitivityClassifier
from exposure_scanner.discovery import SchemaSource
from exposure_scanner.errors import InvalidTargetError, SampleFetchError, SchemaParseError
from exposure_scanner.models import CountStatus, SensitivityLabel
from exposure_scanner.orchestration import ScanOrchestrator, batched
from exposure_scanner.session import ScanPhase
from main import summarize

from conftest import (
    FakeDataClient,
    FakeOracle,
    FakeSchemaSource,
    fenced,
    hits_envelope,
    schema_for,
    table_in_prompt,
)

TABLE_IDS = [f"t{i:02d}" for i in range(10)]


def data_envelopes(table_ids, rows=None):
    rows = rows or [{"name": "Ada Lovelace", "email": "ada@example.com"}]
    return {f"custom.{table_id}": hits_envelope(rows) for table_id in table_ids}


def email_is_high(prompt: str) -> str:
    return fenced({"fields": [{"name": "email", "sensitivity": "high"}]})


class Harness:
    """Orchestrator wired to fakes, recording every published snapshot"""

    def __init__(self, settings, schema_source, data_client, oracle):
        self.data_client = data_client
        self.oracle = oracle
        self.updates = []
        self.orchestrator = ScanOrchestrator(
            schema_source=schema_source,
            data_client=data_client,
            classifier=SensitivityClassifier(oracle, settings),
            aggregator=SensitivityAggregator(oracle, settings),
            settings=settings,
            on_update=self.record
        )

    def record(self, session):
        self.updates.append({
            "session_id": session.session_id,
            "phase": session.phase,
            "batches_completed": session.batches_completed,
            "classified": len(self.oracle.classification_prompts),
            "max_in_flight": self.data_client.max_in_flight,
        })
        if session.phase == ScanPhase.SENSITIVITY_SCANNING and session.batches_completed == 0:
            self.data_client.max_in_flight = 0

    def phases(self):
        return [update["phase"] for update in self.updates]


@pytest.fixture
def harness(settings):
    return Harness(
        settings,
        FakeSchemaSource(schema_for(*TABLE_IDS)),
        FakeDataClient(data_envelopes(TABLE_IDS), delay=0.01),
        FakeOracle(classify=email_is_high),
    )


def test_batched():
    assert [len(batch) for batch in batched(list(range(10)), 4)] == [4, 4, 2]
    assert batched([], 4) == []


class TestScanLifecycle:

    @pytest.mark.asyncio
    async def test_phase_sequence(self, harness):
        session = await harness.orchestrator.start_scan("shop.example.com")

        assert session.phase == ScanPhase.COMPLETE
        assert session.app_url == "https://shop.example.com"
        assert session.app_name == "shop"
        assert harness.phases() == [
            ScanPhase.SCHEMA_LOADING,
            ScanPhase.TABLE_LIST_READY,
            ScanPhase.TABLE_LIST_READY,       # counts
            ScanPhase.SENSITIVITY_SCANNING,   # classification start
            ScanPhase.SENSITIVITY_SCANNING,
            ScanPhase.SENSITIVITY_SCANNING,
            ScanPhase.SENSITIVITY_SCANNING,
            ScanPhase.COMPLETE,
        ]

    @pytest.mark.asyncio
    async def test_ten_tables_run_in_three_batches(self, harness):
        session = await harness.orchestrator.start_scan("shop.example.com")

        scanning = [u for u in harness.updates if u["phase"] in (ScanPhase.SENSITIVITY_SCANNING, ScanPhase.COMPLETE)]
        assert len(scanning) == 5
        assert session.batches_total == 3
        assert [u["batches_completed"] for u in scanning[1:4]] == [1, 2, 3]
        # tables classified by the time each batch is published
        assert [u["classified"] for u in scanning[1:4]] == [4, 8, 10]

    @pytest.mark.asyncio
    async def test_batches_follow_display_name_order(self, harness):
        await harness.orchestrator.start_scan("shop.example.com")

        classified = [table_in_prompt(prompt) for prompt in harness.oracle.classification_prompts]
        assert sorted(classified[:4]) == TABLE_IDS[:4]
        assert sorted(classified[4:8]) == TABLE_IDS[4:8]
        assert sorted(classified[8:]) == TABLE_IDS[8:]

    @pytest.mark.asyncio
    async def test_counts_are_fetched_all_at_once(self, harness):
        await harness.orchestrator.start_scan("shop.example.com")

        start = next(u for u in harness.updates if u["phase"] == ScanPhase.SENSITIVITY_SCANNING)
        assert start["max_in_flight"] == len(TABLE_IDS)
        for table_id in TABLE_IDS:
            assert len(harness.data_client.calls_for(f"custom.{table_id}", page_size=10000)) == 1

    @pytest.mark.asyncio
    async def test_batch_concurrency_is_bounded(self, harness):
        await harness.orchestrator.start_scan("shop.example.com")

        # reset at classification start, so this only covers sampling
        assert harness.data_client.max_in_flight == 4
        for table_id in TABLE_IDS:
            assert len(harness.data_client.calls_for(f"custom.{table_id}", page_size=5)) == 1

    @pytest.mark.asyncio
    async def test_rollups_for_every_table(self, harness):
        session = await harness.orchestrator.start_scan("shop.example.com")

        assert set(session.table_sensitivity) == set(TABLE_IDS)
        assert all(rollup.level == SensitivityLabel.HIGH for rollup in session.table_sensitivity.values())
        assert session.column_sensitivity["t00"] == {"email": SensitivityLabel.HIGH}


class TestEligibility:

    @pytest.mark.asyncio
    async def test_only_tables_with_real_data_are_classified(self, settings):
        envelopes = {
            "custom.people": hits_envelope([{"email": "a@x.com"}]),
            "custom.empty": hits_envelope([]),
            "custom.locked": {"status": 403, "body": {"message": "Forbidden"}},
            "custom.ghosts": hits_envelope([{}, {}]),
            "custom.broken": SampleFetchError("timeout"),
        }
        harness = Harness(
            settings,
            FakeSchemaSource(schema_for("people", "empty", "locked", "ghosts", "broken")),
            FakeDataClient(envelopes),
            FakeOracle(classify=email_is_high),
        )

        session = await harness.orchestrator.start_scan("shop.example.com")

        assert [table_in_prompt(p) for p in harness.oracle.classification_prompts] == ["people"]
        assert session.tables["locked"].record_count.status == CountStatus.ERROR
        assert session.tables["broken"].record_count.display == "?"
        assert session.tables["ghosts"].metadata_only
        assert session.batches_total == 1


class TestFailureIsolation:

    @pytest.mark.asyncio
    async def test_sampling_failure_only_degrades_one_table(self, settings):
        envelopes = data_envelopes(["alpha", "gamma"])
        # count succeeds, the classification sample fails
        envelopes["custom.beta"] = lambda page_size: (
            hits_envelope([{"email": "b@x.com"}]) if page_size == 10000 else SampleFetchError("connection reset")
        )
        harness = Harness(
            settings,
            FakeSchemaSource(schema_for("alpha", "beta", "gamma")),
            FakeDataClient(envelopes),
            FakeOracle(classify=email_is_high),
        )

        session = await harness.orchestrator.start_scan("shop.example.com")

        assert session.phase == ScanPhase.COMPLETE
        assert "beta" in session.table_errors
        assert session.column_sensitivity.get("beta") is None
        assert session.table_sensitivity["alpha"].level == SensitivityLabel.HIGH
        assert session.table_sensitivity["beta"].level == SensitivityLabel.LOW

    @pytest.mark.asyncio
    async def test_classification_failure_only_degrades_one_table(self, settings):
        def flaky(prompt):
            if table_in_prompt(prompt) == "beta":
                return "the model had a bad day"
            return email_is_high(prompt)

        harness = Harness(
            settings,
            FakeSchemaSource(schema_for("alpha", "beta", "gamma")),
            FakeDataClient(data_envelopes(["alpha", "beta", "gamma"])),
            FakeOracle(classify=flaky),
        )

        session = await harness.orchestrator.start_scan("shop.example.com")

        assert session.phase == ScanPhase.COMPLETE
        assert session.table_errors == {"beta": "Classification unavailable"}
        assert set(session.column_sensitivity) == {"alpha", "gamma"}


class TestTerminalFailures:

    @pytest.mark.asyncio
    async def test_schema_failure_fails_session(self, settings):
        harness = Harness(
            settings,
            FakeSchemaSource(error=SchemaParseError("Failed to fetch schema: 502")),
            FakeDataClient(),
            FakeOracle(),
        )

        with pytest.raises(SchemaParseError):
            await harness.orchestrator.start_scan("shop.example.com")

        session = harness.orchestrator.active_session
        assert session.phase == ScanPhase.FAILED
        assert session.error_message.startswith("Scan failed:")
        assert harness.phases() == [ScanPhase.SCHEMA_LOADING, ScanPhase.FAILED]
        assert harness.data_client.calls == []

    @pytest.mark.asyncio
    async def test_schema_without_tables(self, settings):
        harness = Harness(settings, FakeSchemaSource("Ref: a.b > c.d"), FakeDataClient(), FakeOracle())

        with pytest.raises(SchemaParseError):
            await harness.orchestrator.start_scan("shop.example.com")
        assert harness.orchestrator.active_session.phase == ScanPhase.FAILED

    @pytest.mark.asyncio
    async def test_invalid_target(self, settings):
        harness = Harness(settings, FakeSchemaSource(schema_for("users")), FakeDataClient(), FakeOracle())

        with pytest.raises(InvalidTargetError):
            await harness.orchestrator.start_scan("   ")
        assert harness.phases() == [ScanPhase.FAILED]

    @pytest.mark.asyncio
    async def test_malformed_schema_service_url_fails_session(self, settings):
        broken = settings.model_copy(update={"SCHEMA_SERVICE_URL": "https://schema.test/\x00{url}"})
        source = SchemaSource(broken, transport=httpx.MockTransport(lambda request: httpx.Response(404)))
        harness = Harness(broken, source, FakeDataClient(), FakeOracle())

        with pytest.raises(SchemaParseError):
            await harness.orchestrator.start_scan("shop.example.com")

        assert harness.orchestrator.active_session.phase == ScanPhase.FAILED
        assert harness.phases() == [ScanPhase.SCHEMA_LOADING, ScanPhase.FAILED]


class SlowOracle(FakeOracle):
    """Records the request right away, answers after a delay"""

    def __init__(self, delay: float, **handlers):
        super().__init__(**handlers)
        self.delay = delay

    async def generate_completion(self, messages, model=None, temperature=0.0, response_format=None) -> str:
        reply = await super().generate_completion(messages, model, temperature, response_format)
        await asyncio.sleep(self.delay)
        return reply


class TestSupersession:

    @pytest.mark.asyncio
    async def test_new_scan_during_classification_batch(self, settings):
        table_ids = [f"t{i}" for i in range(6)]
        oracle = SlowOracle(
            0.05,
            classify=email_is_high,
            prioritize=lambda prompt: json.dumps({"risk": "high", "tables": [{"name": "t0", "columns": ["email"]}]}),
        )
        harness = Harness(settings, FakeSchemaSource(schema_for(*table_ids)), FakeDataClient(data_envelopes(table_ids)), oracle)

        first_task = asyncio.create_task(harness.orchestrator.start_scan("first.example.com"))
        while not oracle.classification_prompts:
            await asyncio.sleep(0.005)

        first = harness.orchestrator.active_session
        assert first.phase == ScanPhase.SENSITIVITY_SCANNING
        rollups_before = dict(first.table_sensitivity)
        updates_before = len([u for u in harness.updates if u["session_id"] == first.session_id])

        second = await harness.orchestrator.start_scan("second.example.com")
        assert await first_task is first

        # nothing reached the superseded session once the new scan started
        assert len([u for u in harness.updates if u["session_id"] == first.session_id]) == updates_before
        assert first.table_sensitivity == rollups_before
        assert all(rollup.level == SensitivityLabel.LOW for rollup in first.table_sensitivity.values())
        assert first.exposure_summary is None
        assert first.batches_completed == 0
        assert first.phase == ScanPhase.SENSITIVITY_SCANNING

        assert second.phase == ScanPhase.COMPLETE
        assert second.batches_completed == 2
        assert all(rollup.level == SensitivityLabel.HIGH for rollup in second.table_sensitivity.values())
        assert [ranked.name for ranked in second.exposure_summary.tables] == ["t0"]
        assert harness.updates[-1]["session_id"] == second.session_id

    @pytest.mark.asyncio
    async def test_new_scan_discards_stale_results(self, settings):
        harness = Harness(
            settings,
            FakeSchemaSource(schema_for("users")),
            FakeDataClient(data_envelopes(["users"]), delay=0.05),
            FakeOracle(classify=email_is_high),
        )

        first_task = asyncio.create_task(harness.orchestrator.start_scan("first.example.com"))
        await asyncio.sleep(0.01)
        second = await harness.orchestrator.start_scan("second.example.com")
        first = await first_task

        assert second.phase == ScanPhase.COMPLETE
        assert first.phase == ScanPhase.TABLE_LIST_READY
        assert first.tables["users"].record_count is None
        assert first.column_sensitivity == {}

        first_updates = [u for u in harness.updates if u["session_id"] == first.session_id]
        assert [u["phase"] for u in first_updates] == [ScanPhase.SCHEMA_LOADING, ScanPhase.TABLE_LIST_READY]
        assert harness.orchestrator.active_session is second


class TestTableViewAndOverrides:

    @pytest.mark.asyncio
    async def test_open_table_reuses_classification(self, settings):
        harness = Harness(
            settings,
            FakeSchemaSource(schema_for("users")),
            FakeDataClient(data_envelopes(["users"])),
            FakeOracle(classify=email_is_high),
        )
        await harness.orchestrator.start_scan("shop.example.com")

        view = await harness.orchestrator.open_table("users")

        assert len(harness.oracle.classification_prompts) == 1
        assert harness.data_client.calls_for("custom.users", page_size=10000)
        assert {column.name: column.sensitivity for column in view.columns} == {
            "name": SensitivityLabel.LOW,
            "email": SensitivityLabel.HIGH,
        }
        assert view.sensitivity.level == SensitivityLabel.HIGH
        assert view.rows[0]["email"] == "ada@example.com"

    @pytest.mark.asyncio
    async def test_open_table_adds_columns_seen_in_large_sample(self, settings):
        envelopes = {
            "custom.users": lambda page_size: hits_envelope(
                [{"email": "a@x.com"}] if page_size == 5 else [{"email": "a@x.com"}, {"email": "b@x.com", "phone": "555-0100"}]
            )
        }
        harness = Harness(
            settings,
            FakeSchemaSource(schema_for("users")),
            FakeDataClient(envelopes),
            FakeOracle(classify=email_is_high),
        )
        await harness.orchestrator.start_scan("shop.example.com")

        view = await harness.orchestrator.open_table("users")

        assert [column.name for column in view.columns] == ["email", "phone"]
        assert view.record_count.value == 2
        assert len(harness.oracle.classification_prompts) == 1

    @pytest.mark.asyncio
    async def test_open_unknown_table(self, settings):
        harness = Harness(
            settings,
            FakeSchemaSource(schema_for("users")),
            FakeDataClient(data_envelopes(["users"])),
            FakeOracle(classify=email_is_high),
        )
        await harness.orchestrator.start_scan("shop.example.com")

        with pytest.raises(KeyError):
            await harness.orchestrator.open_table("ghosts")

    @pytest.mark.asyncio
    async def test_refresh_reclassifies_on_next_view(self, settings):
        harness = Harness(
            settings,
            FakeSchemaSource(schema_for("users")),
            FakeDataClient(data_envelopes(["users"])),
            FakeOracle(classify=email_is_high),
        )
        await harness.orchestrator.start_scan("shop.example.com")

        harness.orchestrator.refresh("users")
        await harness.orchestrator.open_table("users")

        assert len(harness.oracle.classification_prompts) == 2

    @pytest.mark.asyncio
    async def test_refresh_recomputes_rollup(self, settings):
        harness = Harness(
            settings,
            FakeSchemaSource(schema_for("users", "orders")),
            FakeDataClient(data_envelopes(["users", "orders"])),
            FakeOracle(classify=email_is_high),
        )
        session = await harness.orchestrator.start_scan("shop.example.com")
        harness.orchestrator.set_override("orders", "name", SensitivityLabel.MODERATE)
        published = len(harness.updates)

        harness.orchestrator.refresh("users")

        assert harness.orchestrator.get_effective_sensitivity("users", "email") == SensitivityLabel.LOW
        assert session.table_sensitivity["users"].level == SensitivityLabel.LOW
        assert session.table_sensitivity["users"].contributing_columns == []
        assert session.tables["users"].sensitivity.level == SensitivityLabel.LOW
        assert session.table_sensitivity["orders"].level == SensitivityLabel.HIGH
        assert len(harness.updates) == published + 1
        users = next(row for row in summarize(session).tables if row.table_id == "users")
        assert users.level == "low"

        harness.orchestrator.refresh()

        # overrides outlive a full refresh
        assert session.table_sensitivity["orders"].level == SensitivityLabel.MODERATE
        assert session.table_sensitivity["orders"].contributing_columns == ["name"]

    @pytest.mark.asyncio
    async def test_successful_reclassification_clears_table_error(self, settings):
        replies = ["not json at all"]

        def first_fails(prompt):
            return replies.pop() if replies else email_is_high(prompt)

        harness = Harness(
            settings,
            FakeSchemaSource(schema_for("users")),
            FakeDataClient(data_envelopes(["users"])),
            FakeOracle(classify=first_fails),
        )
        session = await harness.orchestrator.start_scan("shop.example.com")
        assert session.table_errors == {"users": "Classification unavailable"}

        harness.orchestrator.refresh("users")
        view = await harness.orchestrator.open_table("users")

        assert session.column_sensitivity["users"] == {"email": SensitivityLabel.HIGH}
        assert session.table_errors == {}
        assert view.sensitivity.level == SensitivityLabel.HIGH
        assert summarize(session).tables[0].error is None

    @pytest.mark.asyncio
    async def test_open_table_clears_stale_table_error(self, settings):
        harness = Harness(
            settings,
            FakeSchemaSource(schema_for("users")),
            FakeDataClient(data_envelopes(["users"])),
            FakeOracle(classify=email_is_high),
        )
        session = await harness.orchestrator.start_scan("shop.example.com")
        session.table_errors["users"] = "Failed to fetch data for 'users': timeout"

        await harness.orchestrator.open_table("users")

        assert session.table_errors == {}

    @pytest.mark.asyncio
    async def test_override_is_published_and_shown(self, settings):
        harness = Harness(
            settings,
            FakeSchemaSource(schema_for("users")),
            FakeDataClient(data_envelopes(["users"])),
            FakeOracle(classify=email_is_high),
        )
        await harness.orchestrator.start_scan("shop.example.com")
        published = len(harness.updates)

        rollup = harness.orchestrator.set_override("users", "email", SensitivityLabel.LOW)
        view = await harness.orchestrator.open_table("users")

        assert rollup.level == SensitivityLabel.LOW
        assert len(harness.updates) == published + 1
        assert harness.orchestrator.get_effective_sensitivity("users", "email") == SensitivityLabel.LOW
        email = next(column for column in view.columns if column.name == "email")
        assert email.overridden and email.sensitivity == SensitivityLabel.LOW

    @pytest.mark.asyncio
    async def test_refresh_summary(self, settings):
        oracle = FakeOracle(
            classify=email_is_high,
            prioritize=lambda prompt: json.dumps({"risk": "critical", "tables": [{"name": "users", "columns": ["email"]}]}),
        )
        harness = Harness(settings, FakeSchemaSource(schema_for("users")), FakeDataClient(data_envelopes(["users"])), oracle)
        session = await harness.orchestrator.start_scan("shop.example.com")
        assert session.exposure_summary.risk == "critical"

        harness.orchestrator.set_override("users", "email", SensitivityLabel.LOW)
        await harness.orchestrator.refresh_summary()

        assert session.exposure_summary is None

    def test_requires_a_session(self, settings, fake_oracle):
        harness = Harness(settings, FakeSchemaSource(), FakeDataClient(), fake_oracle)

        with pytest.raises(RuntimeError):
            harness.orchestrator.refresh()
