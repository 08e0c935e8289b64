from enum import Enum
import json
import logging
from typing import Any, Dict, Iterable, List, NamedTuple, Optional, Tuple

import requests

from index_updater.models.cluster import Cluster, HttpMethod

logger = logging.getLogger(__name__)

SCROLL_WINDOW = "1h"
NDJSON_HEADERS = {"Content-Type": "application/x-ndjson"}
# Bulk failures are summarized, not dumped whole.
MAX_REPORTED_BULK_FAILURES = 5


class IndexStatus(Enum):
    MISSING = "missing"
    CLOSED = "closed"
    OPEN = "open"


class BackendError(Exception):
    """A request to the search backend failed."""

    def __init__(self, message: str, status_code: Optional[int] = None, error_type: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.error_type = error_type

    @classmethod
    def from_http_error(cls, path: str, error: requests.HTTPError) -> "BackendError":
        response = error.response
        status_code = response.status_code if response is not None else None
        error_type = None
        reason = str(error)
        try:
            body = response.json()
            details = body.get("error", {})
            if isinstance(details, dict):
                error_type = details.get("type")
                reason = details.get("reason", reason)
            elif details:
                reason = str(details)
        except (ValueError, AttributeError):
            pass
        return cls(f"Request to {path} failed with status {status_code}: {reason}",
                   status_code=status_code, error_type=error_type)


class ScrollExpired(BackendError):
    def __init__(self, scroll_id: str):
        super().__init__(f"Scroll cursor {scroll_id[:32]}... expired or was never issued", status_code=404,
                         error_type="search_context_missing_exception")


class BulkWriteFailed(Exception):
    def __init__(self, index: str, failures: List[Dict]):
        self.index = index
        self.failures = failures
        shown = failures[:MAX_REPORTED_BULK_FAILURES]
        super().__init__(f"{len(failures)} document(s) failed to be created in {index}: {shown}")


class ScrollPage(NamedTuple):
    scroll_id: Optional[str]
    hits: List[Tuple[str, Dict]]
    total: int


def alias_action(action: str, alias: str, index: str) -> Dict[str, Dict[str, str]]:
    return {action: {"index": index, "alias": alias}}


def _parse_total(hits: Dict) -> int:
    total = hits.get("total", 0)
    if isinstance(total, dict):
        return int(total.get("value", 0))
    return int(total)


def _parse_scroll_page(body: Dict) -> ScrollPage:
    hits = body.get("hits", {})
    documents = [(hit["_id"], hit.get("_source", {})) for hit in hits.get("hits", [])]
    return ScrollPage(scroll_id=body.get("_scroll_id"), hits=documents, total=_parse_total(hits))


class SearchBackend:
    """
    Typed operations against the search engine. Every call is one blocking round trip, and every failure
    surfaces as a BackendError.
    """

    def __init__(self, cluster: Cluster, session: Optional[requests.Session] = None) -> None:
        self.cluster = cluster
        self.session = session if session is not None else cluster.new_session()

    def for_worker(self) -> "SearchBackend":
        """A backend with its own HTTP session, safe to hand to another thread."""
        return SearchBackend(self.cluster, self.cluster.new_session())

    def _call(self, path: str, method: HttpMethod = HttpMethod.GET, json_body: Any = None, data=None,
              headers=None, params=None, allow_404: bool = False) -> Optional[requests.Response]:
        try:
            return self.cluster.call_api(path, method=method, json_body=json_body, data=data, headers=headers,
                                         session=self.session, params=params or {})
        except requests.HTTPError as e:
            if allow_404 and e.response is not None and e.response.status_code == 404:
                return None
            raise BackendError.from_http_error(path, e) from e
        except requests.RequestException as e:
            raise BackendError(f"Request to {path} failed: {type(e).__name__} {e}") from e

    # Indexes

    def list_indices(self, pattern: str = "*") -> Dict[str, IndexStatus]:
        r = self._call(f"/_cat/indices/{pattern}", params={"format": "json", "h": "index,status",
                                                          "expand_wildcards": "all"}, allow_404=True)
        if r is None:
            return {}
        result = {}
        for row in r.json():
            result[row["index"]] = IndexStatus.CLOSED if row.get("status") == "close" else IndexStatus.OPEN
        return result

    def list_index_names(self) -> List[str]:
        return sorted(self.list_indices())

    def index_status(self, index: str) -> IndexStatus:
        # _cat/indices expands aliases, so only an exact name match counts as the index itself.
        return self.list_indices(index).get(index, IndexStatus.MISSING)

    def index_exists(self, index: str) -> bool:
        return self.index_status(index) != IndexStatus.MISSING

    def create_index(self, index: str, settings: Dict, mappings: Optional[Dict] = None) -> None:
        body: Dict[str, Any] = {"settings": settings}
        if mappings:
            body["mappings"] = mappings
        logger.info(f"Creating index {index}")
        self._call(f"/{index}", method=HttpMethod.PUT, json_body=body)

    def delete_index(self, index: str) -> None:
        logger.info(f"Deleting index {index}")
        self._call(f"/{index}", method=HttpMethod.DELETE)

    def open_index(self, index: str) -> None:
        logger.info(f"Opening index {index}")
        self._call(f"/{index}/_open", method=HttpMethod.POST)

    def close_index(self, index: str) -> None:
        logger.info(f"Closing index {index}")
        self._call(f"/{index}/_close", method=HttpMethod.POST)

    def refresh(self, index: str) -> None:
        self._call(f"/{index}/_refresh", method=HttpMethod.POST)

    def force_merge(self, index: str, max_num_segments: int) -> None:
        self._call(f"/{index}/_forcemerge", method=HttpMethod.POST,
                   params={"max_num_segments": max_num_segments})

    def count(self, index: str) -> int:
        r = self._call(f"/{index}/_count")
        return int(r.json()["count"])

    # Settings and mapping

    def get_settings(self, index: str) -> Dict[str, Any]:
        """Live settings of the index as a flat key-value view, e.g. {"index.number_of_shards": "5"}."""
        r = self._call(f"/{index}/_settings", params={"flat_settings": "true"})
        body = r.json()
        entry = body[index] if index in body else next(iter(body.values()))
        return entry["settings"]

    def set_settings(self, index: str, settings: Dict[str, Any]) -> None:
        self._call(f"/{index}/_settings", method=HttpMethod.PUT, json_body=settings)

    def set_replica_count(self, index: str, replicas: int) -> None:
        self.set_settings(index, {"index": {"number_of_replicas": replicas}})

    def get_mapping(self, index: str) -> Dict[str, Any]:
        r = self._call(f"/{index}/_mapping")
        body = r.json()
        entry = body[index] if index in body else next(iter(body.values()))
        return entry.get("mappings", {})

    def put_mapping(self, index: str, mapping: Dict[str, Any]) -> None:
        self._call(f"/{index}/_mapping", method=HttpMethod.PUT, json_body=mapping)

    # Aliases

    def get_indices_with_alias(self, alias: str) -> List[str]:
        # 404 means no index holds the alias.
        r = self._call(f"/_alias/{alias}", allow_404=True)
        if r is None:
            return []
        return sorted(r.json().keys())

    def update_aliases(self, actions: List[Dict]) -> None:
        """Send all alias actions as one request; the backend applies them atomically."""
        logger.info(f"Updating aliases: {actions}")
        self._call("/_aliases", method=HttpMethod.POST, json_body={"actions": actions})

    def add_alias(self, alias: str, index: str) -> None:
        self.update_aliases([alias_action("add", alias, index)])

    def swap_alias(self, alias: str, add_index: str, remove_indexes: Iterable[str]) -> None:
        actions = [alias_action("add", alias, add_index)]
        actions.extend(alias_action("remove", alias, old) for old in remove_indexes if old != add_index)
        self.update_aliases(actions)

    # Documents

    def bulk_create(self, index: str, documents: List[Tuple[str, Dict]]) -> int:
        """Write documents with create semantics, so an id already present in the index is an error."""
        if not documents:
            return 0
        lines = []
        for doc_id, source in documents:
            lines.append(json.dumps({"create": {"_index": index, "_id": doc_id}}))
            lines.append(json.dumps(source))
        payload = "\n".join(lines) + "\n"
        r = self._call("/_bulk", method=HttpMethod.POST, data=payload.encode("utf-8"), headers=NDJSON_HEADERS)
        body = r.json()
        if body.get("errors"):
            failures = []
            for item in body.get("items", []):
                result = next(iter(item.values()))
                if "error" in result:
                    failures.append({"_id": result.get("_id"), "status": result.get("status"),
                                     "error": result["error"]})
            raise BulkWriteFailed(index, failures)
        logger.debug(f"Bulk write of {len(documents)} documents to {index} took {body.get('took')} millis")
        return len(documents)

    def open_scroll(self, index: str, query: Dict, size: int, window: str = SCROLL_WINDOW) -> ScrollPage:
        body = {"size": size, "query": query, "sort": ["_doc"], "track_total_hits": True}
        r = self._call(f"/{index}/_search", method=HttpMethod.POST, json_body=body, params={"scroll": window})
        return _parse_scroll_page(r.json())

    def fetch_next(self, scroll_id: str, window: str = SCROLL_WINDOW) -> ScrollPage:
        r = self._call("/_search/scroll", method=HttpMethod.POST,
                       json_body={"scroll": window, "scroll_id": scroll_id}, allow_404=True)
        if r is None:
            raise ScrollExpired(scroll_id)
        return _parse_scroll_page(r.json())

    def clear_scroll(self, scroll_id: str) -> None:
        # Best effort: an uncleared cursor still expires at the end of its window.
        try:
            self.cluster.call_api("/_search/scroll", method=HttpMethod.DELETE, json_body={"scroll_id": scroll_id},
                                  session=self.session, raise_error=False)
        except requests.RequestException as e:
            logger.warning(f"Unable to clear scroll cursor: {e}")

    # Shards

    def shard_states(self, index: str) -> List[str]:
        r = self._call(f"/_cat/shards/{index}", params={"format": "json", "h": "index,shard,prirep,state"})
        return [row["state"] for row in r.json()]
