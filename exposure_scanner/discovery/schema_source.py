import logging
import re
from typing import Optional
from urllib.parse import quote, urlparse

import httpx

from config.settings import Settings
from ..errors import InvalidTargetError, SchemaParseError

logger = logging.getLogger(__name__)

_SCHEME_RE = re.compile(r"^https?://", re.IGNORECASE)


def normalize_app_url(url: str) -> str:
    """
        Trim the address, default the scheme to https and make sure there is a host.
    """
    url = (url or "").strip()
    if not url:
        raise InvalidTargetError("Please enter an app URL")

    if not _SCHEME_RE.match(url):
        url = f"https://{url}"

    parsed = urlparse(url)
    if not parsed.hostname or " " in parsed.netloc:
        raise InvalidTargetError("Please enter a valid URL")
    return url


def app_origin(url: str) -> str:
    parsed = urlparse(url)
    return f"{parsed.scheme}://{parsed.netloc}"


def app_name_from_host(url: str) -> str:
    """Fallback application identifier: first label of the host name"""
    hostname = urlparse(url).hostname
    return hostname.split(".")[0] if hostname else "unknown"


class SchemaSource:
    """Fetches application identity and schema description for a target app"""

    def __init__(self, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.settings = settings
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.settings.HTTP_TIMEOUT, transport=self.transport)

    async def fetch_app_name(self, app_url: str) -> str:
        """
            Read the application identifier from the app's meta endpoint,
            falling back to the host name.
        """
        meta_url = f"{app_origin(app_url)}/api/1.1/meta"
        try:
            async with self._client() as client:
                response = await client.get(meta_url)
                response.raise_for_status()
                data = response.json()

            app_name = (data.get("app_data") or {}).get("appname") if isinstance(data, dict) else None
            if app_name:
                logger.info(f"Resolved app name '{app_name}' from meta endpoint")
                return app_name

        except (httpx.HTTPError, httpx.InvalidURL, ValueError) as e:
            logger.warning(f"Meta lookup failed for {app_url}: {e}")

        fallback = app_name_from_host(app_url)
        logger.info(f"Using host-derived app name '{fallback}'")
        return fallback

    async def fetch_schema(self, app_url: str) -> str:
        """Return the raw schema description text for the app"""
        schema_url = self.settings.SCHEMA_SERVICE_URL.replace("{url}", quote(app_url, safe=""))
        logger.info(f"Fetching schema for {app_url}")
        try:
            async with self._client() as client:
                response = await client.get(schema_url)
                response.raise_for_status()
                return response.text

        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.error(f"Schema fetch failed for {app_url}: {e}")
            raise SchemaParseError(f"Failed to fetch schema: {e}") from e
