import os
from typing import Optional
from pydantic import BaseModel
from dotenv import load_dotenv

load_dotenv()


def _optional_float(key: str) -> Optional[float]:
    value = os.getenv(key)
    return float(value) if value else None


class Settings(BaseModel):
    """Application settings from environment variables"""

    # OpenAI (classification + prioritization oracles)
    OPENAI_API_KEY: Optional[str] = os.getenv("OPENAI_API_KEY")
    OPENAI_MODEL: str = os.getenv("OPENAI_MODEL", "gpt-4o-mini")

    # Langfuse (optional - auto-enabled if keys present)
    LANGFUSE_PUBLIC_KEY: Optional[str] = os.getenv("LANGFUSE_PUBLIC_KEY")
    LANGFUSE_SECRET_KEY: Optional[str] = os.getenv("LANGFUSE_SECRET_KEY")
    LANGFUSE_HOST: Optional[str] = os.getenv("LANGFUSE_HOST")

    # Schema source, {url} is replaced with the url-encoded target address
    SCHEMA_SERVICE_URL: str = os.getenv("SCHEMA_SERVICE_URL", "")

    # Encrypted data-access exchange
    ENCRYPT_API_URL: str = os.getenv("ENCRYPT_API_URL", "")
    WORKER_API_URL: str = os.getenv("WORKER_API_URL", "")
    WORKER_APP_NAME: str = os.getenv("WORKER_APP_NAME", "")
    WORKER_SEARCH_URL: str = os.getenv("WORKER_SEARCH_URL", "")
    SCAN_TOKEN_X: str = os.getenv("SCAN_TOKEN_X", "")
    SCAN_TOKEN_Y: str = os.getenv("SCAN_TOKEN_Y", "")

    # None disables the HTTP timeout
    HTTP_TIMEOUT: Optional[float] = _optional_float("HTTP_TIMEOUT")

    # Scan tuning
    CLASSIFICATION_BATCH_SIZE: int = int(os.getenv("CLASSIFICATION_BATCH_SIZE", "4"))
    CLASSIFICATION_SAMPLE_SIZE: int = int(os.getenv("CLASSIFICATION_SAMPLE_SIZE", "5"))
    COUNT_PAGE_SIZE: int = int(os.getenv("COUNT_PAGE_SIZE", "10000"))
    RESULT_CAP: int = int(os.getenv("RESULT_CAP", "400"))
    MAX_SAMPLE_VALUES: int = int(os.getenv("MAX_SAMPLE_VALUES", "3"))
    MAX_SAMPLE_LENGTH: int = int(os.getenv("MAX_SAMPLE_LENGTH", "100"))
    SUMMARY_MAX_TABLES: int = int(os.getenv("SUMMARY_MAX_TABLES", "4"))
    SUMMARY_MAX_COLUMNS: int = int(os.getenv("SUMMARY_MAX_COLUMNS", "5"))

    @property
    def enable_langfuse(self) -> bool:
        """Check if Langfuse monitoring should be enabled"""
        return bool(self.LANGFUSE_PUBLIC_KEY and self.LANGFUSE_SECRET_KEY)

    def validate_for_scan(self) -> None:
        """Raise ScanConfigurationError if any endpoint or token needed for a scan is missing"""
        from exposure_scanner.errors import ScanConfigurationError

        required = [
            "OPENAI_API_KEY",
            "SCHEMA_SERVICE_URL",
            "ENCRYPT_API_URL",
            "WORKER_API_URL",
            "WORKER_APP_NAME",
            "WORKER_SEARCH_URL",
            "SCAN_TOKEN_X",
            "SCAN_TOKEN_Y",
        ]
        missing = [key for key in required if not getattr(self, key)]
        if missing:
            raise ScanConfigurationError(
                f"Missing required environment variables: {', '.join(missing)}"
            )
