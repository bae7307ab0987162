import json
import re
from typing import Any

_FENCE_RE = re.compile(r"```(?:json|JSON)?\s*(.*?)```", re.DOTALL)


def extract_json_payload(text: str) -> Any:
    """
        Pull the JSON document out of an oracle reply. Replies may wrap it in
        a markdown fence or surround it with prose.

        Raises ValueError when no JSON document can be decoded.
    """
    if not text or not text.strip():
        raise ValueError("Empty oracle response")

    candidates = [match.strip() for match in _FENCE_RE.findall(text)]
    candidates.append(text.strip())

    start, end = text.find("{"), text.rfind("}")
    if start != -1 and end > start:
        candidates.append(text[start:end + 1])

    for candidate in candidates:
        try:
            return json.loads(candidate)
        except json.JSONDecodeError:
            continue

    raise ValueError(f"No JSON payload in oracle response: {text[:200]}")
