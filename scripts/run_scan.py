import sys
import os
import asyncio
import argparse
import logging

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from config.settings import Settings
from exposure_scanner.errors import ScanConfigurationError
from main import setup_logging, run_scan

logger = logging.getLogger(__name__)


class Colors:
    """ANSI color codes for terminal output"""
    BLUE = '\033[94m'
    CYAN = '\033[96m'
    GREEN = '\033[92m'
    YELLOW = '\033[93m'
    RED = '\033[91m'
    BOLD = '\033[1m'
    END = '\033[0m'


LEVEL_COLORS = {"high": Colors.RED, "moderate": Colors.YELLOW, "low": Colors.GREEN}


def print_header(text: str):
    """Print formatted header"""
    print(f"\n{Colors.BOLD}{Colors.BLUE}{'='*80}{Colors.END}")
    print(f"{Colors.BOLD}{Colors.BLUE}{text.center(80)}{Colors.END}")
    print(f"{Colors.BOLD}{Colors.BLUE}{'='*80}{Colors.END}\n")


def print_section(text: str):
    """Print formatted section"""
    print(f"\n{Colors.BOLD}{Colors.CYAN}{text}{Colors.END}")
    print(f"{Colors.CYAN}{'-'*len(text)}{Colors.END}")


def print_error(text: str):
    """Print error message"""
    print(f"{Colors.RED}✗ {text}{Colors.END}")


def parse_override(value: str) -> tuple:
    """'users.email=low' -> ('users', 'email', 'low')"""
    try:
        target, label = value.split("=", 1)
        table_id, column = target.split(".", 1)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Expected table.column=label, got '{value}'")
    return table_id.strip(), column.strip(), label.strip().lower()


def main():
    parser = argparse.ArgumentParser(description='Scan an app for exposed sensitive data')
    parser.add_argument('url', help='Root address of the target application')
    parser.add_argument(
        '--override',
        action='append',
        type=parse_override,
        default=[],
        metavar='TABLE.COLUMN=LABEL',
        help='Manual sensitivity decision (low, moderate or high); may be repeated'
    )
    parser.add_argument('--verbose', action='store_true', help='Debug logging')
    args = parser.parse_args()

    setup_logging(level=logging.DEBUG if args.verbose else logging.INFO, log_to_console=args.verbose)

    settings = Settings()
    try:
        settings.validate_for_scan()
    except ScanConfigurationError as e:
        print_error(str(e))
        sys.exit(1)

    print_header("Data Exposure Scan")
    result = asyncio.run(run_scan(args.url, settings=settings, overrides=args.override))

    if result.error:
        print_error(result.error)
        sys.exit(1)

    print_section(f"Tables in {result.app_name}")
    for row in result.tables:
        color = LEVEL_COLORS.get(row.level, Colors.END)
        columns = f" ({', '.join(row.sensitive_columns)})" if row.sensitive_columns else ""
        note = f"  [{row.error}]" if row.error else ""
        print(f"  {row.display_name:<40} {row.record_count:>6}  {color}{row.level:<9}{Colors.END}{columns}{note}")

    if result.ranked_tables:
        print_section(f"Exposure summary - risk: {result.risk}")
        for rank, (name, columns) in enumerate(result.ranked_tables.items(), 1):
            print(f"  {rank}. {name}: {', '.join(columns)}")


if __name__ == '__main__':
    main()
