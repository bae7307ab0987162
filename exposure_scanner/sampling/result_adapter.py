import logging
from collections import deque
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

Row = Dict[str, Any]


class ResultAdapter:
    """
        Normalizes the response shapes of the data-access service into rows.

        Shapes are tried in a fixed order and the first match wins:
          1. a bare array
          2. a search-engine envelope with hits.hits (at the top level or under "body")
          3. a cursor-paginated envelope with a "results" array (top level or under "response")
          4. the first array-valued property found anywhere in the envelope
        Anything else yields no rows.
    """

    def normalize(self, raw_response: Any) -> List[Row]:
        if isinstance(raw_response, list):
            return self._as_rows(raw_response)

        if not isinstance(raw_response, dict):
            return []

        hits = self.find_hits(raw_response)
        if hits is not None:
            return [self._flatten_hit(hit) for hit in hits if isinstance(hit, dict)]

        results = self._find_results(raw_response)
        if results is not None:
            return self._as_rows(results)

        fallback = self._first_array(raw_response)
        if fallback is not None:
            logger.debug("No known envelope shape, using first array property")
            return self._as_rows(fallback)

        return []

    @staticmethod
    def find_hits(envelope: Dict[str, Any]) -> Optional[List[Any]]:
        for container in (envelope.get("body"), envelope):
            if isinstance(container, dict):
                hits = container.get("hits")
                if isinstance(hits, dict) and isinstance(hits.get("hits"), list):
                    return hits["hits"]
        return None

    @staticmethod
    def at_end(envelope: Any) -> Optional[bool]:
        """Upstream 'no more records' flag, None when the envelope does not say"""
        if not isinstance(envelope, dict):
            return None
        for container in (envelope.get("body"), envelope):
            if isinstance(container, dict) and isinstance(container.get("at_end"), bool):
                return container["at_end"]
        response = envelope.get("response")
        if isinstance(response, dict) and isinstance(response.get("remaining"), int):
            return response["remaining"] == 0
        return None

    @staticmethod
    def _find_results(envelope: Dict[str, Any]) -> Optional[List[Any]]:
        response = envelope.get("response")
        if isinstance(response, dict) and isinstance(response.get("results"), list):
            return response["results"]
        if isinstance(envelope.get("results"), list):
            return envelope["results"]
        return None

    @staticmethod
    def _first_array(envelope: Dict[str, Any]) -> Optional[List[Any]]:
        """Breadth-first search for the shallowest array-valued property"""
        queue = deque([envelope])
        while queue:
            current = queue.popleft()
            for value in current.values():
                if isinstance(value, list):
                    return value
            queue.extend(value for value in current.values() if isinstance(value, dict))
        return None

    @staticmethod
    def _flatten_hit(hit: Dict[str, Any]) -> Row:
        row = dict(hit.get("_source") or {})
        row["_id"] = hit.get("_id")
        row["_type"] = hit.get("_type")
        row["_version"] = hit.get("_version")
        return row

    @staticmethod
    def _as_rows(items: List[Any]) -> List[Row]:
        return [dict(item) for item in items if isinstance(item, dict)]
