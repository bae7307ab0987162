"""
Shared fixtures and fake collaborators for the scanner tests
"""

import asyncio
import json
import os
import re
import sys
from typing import Any, Callable, Dict, List, Optional

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from config.settings import Settings
from exposure_scanner.errors import SampleFetchError
from exposure_scanner.classification.classifier import SYSTEM_PROMPT as CLASSIFIER_PROMPT


def hits_envelope(sources: List[Dict[str, Any]], at_end: bool = True, status: int = 200) -> Dict[str, Any]:
    """Worker response in the search-engine shape"""
    return {
        "status": status,
        "body": {
            "at_end": at_end,
            "hits": {
                "hits": [
                    {"_id": f"id-{i}", "_type": "custom.test", "_version": 1, "_source": source}
                    for i, source in enumerate(sources)
                ]
            },
        },
    }


def fenced(payload: Dict[str, Any]) -> str:
    return f"Here is the result:\n```json\n{json.dumps(payload)}\n```\n"


class FakeDataClient:
    """Stands in for the encrypted data-access exchange"""

    def __init__(self, envelopes: Optional[Dict[str, Any]] = None, delay: float = 0.0):
        self.envelopes = envelopes or {}
        self.delay = delay
        self.calls: List[Dict[str, Any]] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def search(self, app_name: str, type_qualifier: str, page_size: int, offset: int = 0) -> Dict[str, Any]:
        self.calls.append({"app_name": app_name, "type": type_qualifier, "n": page_size})
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delay)
            envelope = self.envelopes.get(type_qualifier)
            if callable(envelope):
                envelope = envelope(page_size)
            if isinstance(envelope, Exception):
                raise envelope
            if envelope is None:
                return hits_envelope([])
            return envelope
        finally:
            self.in_flight -= 1

    def calls_for(self, type_qualifier: str, page_size: Optional[int] = None) -> List[Dict[str, Any]]:
        return [
            call for call in self.calls
            if call["type"] == type_qualifier and (page_size is None or call["n"] == page_size)
        ]


class FakeSchemaSource:
    """Serves a fixed app name and schema text, or raises the given error"""

    def __init__(self, schema_text: str = "", app_name: str = "shop", error: Optional[Exception] = None):
        self.schema_text = schema_text
        self.app_name = app_name
        self.error = error

    async def fetch_app_name(self, app_url: str) -> str:
        return self.app_name

    async def fetch_schema(self, app_url: str) -> str:
        await asyncio.sleep(0)
        if self.error is not None:
            raise self.error
        return self.schema_text


def schema_for(*table_ids: str) -> str:
    return "".join(f"Table {table_id} {{\n}}\n" for table_id in table_ids)


def table_in_prompt(prompt: str) -> str:
    """Table id named in a classification prompt"""
    match = re.search(r"Table: (\S+)", prompt)
    return match.group(1) if match else ""


class FakeOracle:
    """
    Stands in for OpenAIClient. Classification and prioritization requests are
    told apart by their system prompt and answered by the given handlers.
    """

    def __init__(
        self,
        classify: Optional[Callable[[str], str]] = None,
        prioritize: Optional[Callable[[str], str]] = None
    ):
        self.classify_handler = classify or (lambda prompt: json.dumps({"fields": []}))
        self.prioritize_handler = prioritize or (lambda prompt: json.dumps({"risk": "low", "tables": []}))
        self.classification_prompts: List[str] = []
        self.prioritization_prompts: List[str] = []

    async def generate_completion(self, messages, model=None, temperature=0.0, response_format=None) -> str:
        await asyncio.sleep(0)
        system, user = messages[0]["content"], messages[1]["content"]
        if system == CLASSIFIER_PROMPT:
            self.classification_prompts.append(user)
            return self.classify_handler(user)
        self.prioritization_prompts.append(user)
        return self.prioritize_handler(user)


@pytest.fixture
def settings():
    return Settings(
        OPENAI_API_KEY="sk-test",
        LANGFUSE_PUBLIC_KEY=None,
        LANGFUSE_SECRET_KEY=None,
        SCHEMA_SERVICE_URL="https://schema.test/api/schema/{url}?format=dbml",
        ENCRYPT_API_URL="https://encrypt.test/prod/encrypt",
        WORKER_API_URL="https://worker.test/",
        WORKER_APP_NAME="worker-app",
        WORKER_SEARCH_URL="https://worker-app.test/elasticsearch/search",
        SCAN_TOKEN_X="token-x",
        SCAN_TOKEN_Y="token-y",
        HTTP_TIMEOUT=None,
        CLASSIFICATION_BATCH_SIZE=4,
        CLASSIFICATION_SAMPLE_SIZE=5,
        COUNT_PAGE_SIZE=10000,
        RESULT_CAP=400,
    )


@pytest.fixture
def fake_oracle():
    return FakeOracle()


@pytest.fixture
def transport_error():
    return SampleFetchError("connection reset")
