import sys
import logging
from pathlib import Path
from typing import Dict, List, Optional
from dataclasses import dataclass, field

from config.settings import Settings
from exposure_scanner.aggregation import SensitivityAggregator
from exposure_scanner.classification import SensitivityClassifier
from exposure_scanner.discovery import SchemaSource
from exposure_scanner.errors import ScannerError
from exposure_scanner.models import SensitivityLabel
from exposure_scanner.openai_client import OpenAIClient
from exposure_scanner.orchestration import ScanOrchestrator
from exposure_scanner.sampling import DataAccessClient
from exposure_scanner.session import ScanSession, ScanPhase


LOG_DIR = Path(__file__).parent / "logs"
LOG_FILE = LOG_DIR / "scanner.log"


def setup_logging(
    level: int = logging.INFO,
    log_to_file: bool = True,
    log_to_console: bool = True
) -> logging.Logger:
    """
    Configure logging for the application.

    Args:
        level: Logging level (default: INFO)
        log_to_file: Write logs to file (default: True)
        log_to_console: Write logs to console/stderr (default: True)

    Returns:
        Root logger instance
    """
    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(level)

    formatter = logging.Formatter(
        '%(asctime)s | %(levelname)-8s | %(name)s | %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    if log_to_file:
        LOG_DIR.mkdir(exist_ok=True)
        file_handler = logging.FileHandler(LOG_FILE, encoding='utf-8')
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    if log_to_console:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        root_logger.addHandler(console_handler)

    logging.getLogger('exposure_scanner').setLevel(level)

    # Suppress noisy third-party logs
    for lib in ['openai', 'httpx', 'httpcore', 'langfuse']:
        logging.getLogger(lib).setLevel(logging.WARNING)

    return root_logger


logger = logging.getLogger(__name__)


@dataclass
class TableRow:
    """One line of the table list"""
    table_id: str
    display_name: str
    record_count: str
    has_data: bool
    level: str
    sensitive_columns: List[str] = field(default_factory=list)
    error: Optional[str] = None


@dataclass
class ScanResult:
    """Outcome of a scan"""
    success: bool
    app_url: str
    app_name: Optional[str] = None
    tables: List[TableRow] = field(default_factory=list)
    risk: Optional[str] = None
    ranked_tables: Dict[str, List[str]] = field(default_factory=dict)
    error: Optional[str] = None


def build_orchestrator(settings: Settings, on_update=None) -> ScanOrchestrator:
    """Wire up the scan collaborators from settings"""
    openai_client = OpenAIClient(
        api_key=settings.OPENAI_API_KEY,
        enable_langfuse=settings.enable_langfuse,
        model=settings.OPENAI_MODEL
    )
    return ScanOrchestrator(
        schema_source=SchemaSource(settings),
        data_client=DataAccessClient(settings),
        classifier=SensitivityClassifier(openai_client, settings),
        aggregator=SensitivityAggregator(openai_client, settings),
        settings=settings,
        on_update=on_update
    )


def summarize(session: ScanSession) -> ScanResult:
    """Flatten a session into a presentation-friendly result"""
    if session.phase == ScanPhase.FAILED:
        return ScanResult(success=False, app_url=session.app_url, app_name=session.app_name, error=session.error_message)

    rows = []
    for table in session.sorted_tables():
        rollup = session.table_sensitivity.get(table.id)
        rows.append(TableRow(
            table_id=table.id,
            display_name=table.display_name,
            record_count="0" if table.metadata_only else (table.record_count.display if table.record_count else "?"),
            has_data=table.has_real_data,
            level=rollup.level.value if rollup else SensitivityLabel.LOW.value,
            sensitive_columns=list(rollup.contributing_columns) if rollup else [],
            error=session.table_errors.get(table.id)
        ))

    summary = session.exposure_summary
    return ScanResult(
        success=session.phase == ScanPhase.COMPLETE,
        app_url=session.app_url,
        app_name=session.app_name,
        tables=rows,
        risk=summary.risk if summary else None,
        ranked_tables={ranked.name: ranked.columns for ranked in summary.tables} if summary else {}
    )


async def run_scan(
    app_url: str,
    settings: Optional[Settings] = None,
    overrides: Optional[List[tuple]] = None,
    on_update=None
) -> ScanResult:
    """
        Scan one application and return the flattened result. Overrides are
        (table_id, column, label) tuples applied after classification.
    """
    settings = settings or Settings()
    orchestrator = build_orchestrator(settings, on_update=on_update)

    try:
        session = await orchestrator.start_scan(app_url)
    except ScannerError as e:
        logger.error(f"Scan of {app_url} failed: {e}")
        session = orchestrator.active_session
        if session is None:
            return ScanResult(success=False, app_url=app_url, error=str(e))
        return summarize(session)

    if overrides:
        for table_id, column, label in overrides:
            try:
                orchestrator.set_override(table_id, column, SensitivityLabel(label))
            except (KeyError, ValueError) as e:
                logger.warning(f"Ignoring override {table_id}.{column}={label}: {e}")
        await orchestrator.refresh_summary()

    return summarize(session)
