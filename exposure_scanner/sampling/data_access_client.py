import json
import logging
from typing import Any, Dict, Optional

import httpx

from config.settings import Settings
from ..errors import SampleFetchError

logger = logging.getLogger(__name__)

# Data source path the search endpoint expects for a plain "search all" request
SEARCH_PATH = json.dumps(
    {
        "constructor_name": "DataSource",
        "args": [
            {"type": "json", "value": "%p3.cnEQb0.%el.cnEQh0.%p.%ds"},
            {"type": "node", "value": {"constructor_name": "Element", "args": [{"type": "json", "value": "%p3.cnEQb0.%el.cnEQh0"}]}},
            {"type": "raw", "value": "Search"},
        ],
    },
    separators=(",", ":"),
)


class DataAccessClient:
    """
        Client for the encrypted search exchange.

        A search payload is first sealed by the encrypt endpoint (which returns
        x, y and z), then the sealed request is forwarded to the worker, whose
        JSON envelope is returned untouched.
    """
    def __init__(self, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.settings = settings
        self.transport = transport

    def build_payload(self, app_name: str, type_qualifier: str, page_size: int, offset: int = 0) -> Dict[str, Any]:
        return {
            "app_version": "live",
            "appname": app_name,
            "constraints": [],
            "from": offset,
            "n": page_size,
            "search_path": SEARCH_PATH,
            "situation": "initial search",
            "sorts_list": [],
            "type": type_qualifier,
        }

    async def search(self, app_name: str, type_qualifier: str, page_size: int, offset: int = 0) -> Dict[str, Any]:
        """Run one search and return the worker's response envelope"""
        payload = self.build_payload(app_name, type_qualifier, page_size, offset)
        logger.debug(f"Search request for {type_qualifier}: n={page_size} from={offset}")

        try:
            async with httpx.AsyncClient(timeout=self.settings.HTTP_TIMEOUT, transport=self.transport) as client:
                encrypted = await self._post_json(
                    client,
                    self.settings.ENCRYPT_API_URL,
                    {"x": self.settings.SCAN_TOKEN_X, "y": self.settings.SCAN_TOKEN_Y, "payload": payload},
                )
                if not isinstance(encrypted, dict) or not encrypted.get("z"):
                    raise SampleFetchError("Encryption failed - no z value returned")

                envelope = await self._post_json(
                    client,
                    self.settings.WORKER_API_URL,
                    {
                        "x": encrypted.get("x"),
                        "y": encrypted.get("y"),
                        "z": encrypted["z"],
                        "appname": self.settings.WORKER_APP_NAME,
                        "url": self.settings.WORKER_SEARCH_URL,
                    },
                )

        except httpx.HTTPError as e:
            raise SampleFetchError(f"Search request for {type_qualifier} failed: {e}") from e

        logger.debug(f"Search response for {type_qualifier}: {json.dumps(envelope)[:500]}")
        return envelope

    async def _post_json(self, client: httpx.AsyncClient, url: str, body: Dict[str, Any]) -> Any:
        response = await client.post(url, json=body)
        try:
            return response.json()
        except ValueError as e:
            raise SampleFetchError(f"Non-JSON response from {url} (HTTP {response.status_code})") from e
