import copy
from dataclasses import dataclass, field
import itertools
import threading
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from index_updater.models.cluster import AuthMethod, Cluster
from index_updater.models.desired_state import InlineDesiredState
from index_updater.models.reindexer import partition_of
from index_updater.models.search_backend import BackendError, BulkWriteFailed, IndexStatus, ScrollExpired, \
    ScrollPage, SearchBackend


def create_valid_cluster(endpoint: str = "https://opensearchtarget:9200",
                         allow_insecure: bool = True,
                         auth_type: AuthMethod = AuthMethod.BASIC_AUTH,
                         details: Optional[Dict] = None):

    if details is None and auth_type == AuthMethod.BASIC_AUTH:
        details = {"username": "admin", "password": "myStrongPassword123!"}

    custom_cluster_config = {
        "endpoint": endpoint,
        "allow_insecure": allow_insecure,
        auth_type.name.lower(): details if details else {}
    }
    return Cluster(custom_cluster_config)


ANALYSIS = {
    "analyzer": {
        "text": {
            "type": "custom",
            "tokenizer": "standard",
            "filter": ["lowercase", "asciifolding"],
        }
    }
}

MAPPING = {
    "dynamic": False,
    "properties": {
        "title": {"type": "text", "analyzer": "text"},
        "namespace": {"type": "long"},
    }
}


def create_inline_desired_state(analysis: Optional[Dict] = None, mapping: Optional[Dict] = None):
    return InlineDesiredState({"inline": {"analysis": copy.deepcopy(analysis or ANALYSIS),
                                          "mapping": copy.deepcopy(mapping or MAPPING)}})


def _settings_text(value: Any) -> Any:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, list):
        return [_settings_text(v) for v in value]
    return str(value)


def flatten_settings(settings: Dict, prefix: str = "") -> Dict[str, Any]:
    """Flatten settings the way the backend reports them with flat_settings=true: every value a string."""
    flat = {}
    for key, value in settings.items():
        full_key = f"{prefix}{key}"
        if isinstance(value, dict):
            flat.update(flatten_settings(value, f"{full_key}."))
        else:
            flat[full_key if full_key.startswith("index.") else f"index.{full_key}"] = _settings_text(value)
    return flat


def _merge_mapping(existing: Dict, update: Dict, path: str = "") -> None:
    for key, value in update.items():
        if isinstance(value, dict) and isinstance(existing.get(key), dict):
            _merge_mapping(existing[key], value, f"{path}{key}.")
        elif key in existing and key == "type" and existing[key] != value:
            raise BackendError(f"mapper [{path.rstrip('.')}] cannot be changed from type [{existing[key]}] "
                               f"to [{value}]", status_code=400, error_type="illegal_argument_exception")
        else:
            existing[key] = copy.deepcopy(value)


@dataclass
class FakeIndex:
    settings: Dict[str, Any]
    mapping: Dict[str, Any]
    documents: Dict[str, Dict] = field(default_factory=dict)
    aliases: Set[str] = field(default_factory=set)
    closed: bool = False


class FakeBackend(SearchBackend):
    """An in-memory search backend with just enough behavior to run the engine, reindexer, and alias swap."""

    def __init__(self, shard_state_polls: Optional[List[List[str]]] = None):
        self.cluster = create_valid_cluster()
        self.session = None
        self.indices: Dict[str, FakeIndex] = {}
        self.calls: List[Tuple[str, Any]] = []
        self.scrolls: Dict[str, List[List[Tuple[str, Dict]]]] = {}
        self.expired_scrolls: Set[str] = set()
        self.shard_state_polls = list(shard_state_polls or [])
        self.fail_deletes: Set[str] = set()
        self._scroll_ids = itertools.count(1)
        self._lock = threading.RLock()

    def for_worker(self) -> "FakeBackend":
        return self

    # helpers for tests

    def add_index(self, name: str, shards: int = 1, replicas: int = 1, analysis: Optional[Dict] = None,
                  mapping: Optional[Dict] = None, documents: Optional[Dict[str, Dict]] = None,
                  aliases: Iterable[str] = (), closed: bool = False) -> FakeIndex:
        settings = {"index": {"number_of_shards": shards, "number_of_replicas": replicas,
                              "analysis": copy.deepcopy(analysis if analysis is not None else ANALYSIS)}}
        index = FakeIndex(settings=flatten_settings(settings),
                          mapping=copy.deepcopy(mapping if mapping is not None else MAPPING),
                          documents=dict(documents or {}), aliases=set(aliases), closed=closed)
        self.indices[name] = index
        return index

    def holders(self, alias: str) -> List[str]:
        return sorted(name for name, index in self.indices.items() if alias in index.aliases)

    def calls_to(self, method: str) -> List[Any]:
        return [args for name, args in self.calls if name == method]

    def _record(self, method: str, *args) -> None:
        self.calls.append((method, args))

    def _get(self, index: str) -> FakeIndex:
        if index not in self.indices:
            raise BackendError(f"no such index [{index}]", status_code=404, error_type="index_not_found_exception")
        return self.indices[index]

    def _resolve(self, name: str) -> List[str]:
        if name in self.indices:
            return [name]
        holders = self.holders(name)
        if not holders:
            raise BackendError(f"no such index [{name}]", status_code=404, error_type="index_not_found_exception")
        return holders

    # indexes

    def list_indices(self, pattern: str = "*") -> Dict[str, IndexStatus]:
        if pattern not in ("*", ""):
            names = [pattern] if pattern in self.indices else self.holders(pattern)
        else:
            names = list(self.indices)
        return {name: IndexStatus.CLOSED if self.indices[name].closed else IndexStatus.OPEN for name in names}

    def create_index(self, index: str, settings: Dict, mappings: Optional[Dict] = None) -> None:
        self._record("create_index", index, copy.deepcopy(settings))
        if index in self.indices:
            raise BackendError(f"index [{index}] already exists", status_code=400,
                               error_type="resource_already_exists_exception")
        self.indices[index] = FakeIndex(settings=flatten_settings(settings), mapping=copy.deepcopy(mappings or {}))

    def delete_index(self, index: str) -> None:
        self._record("delete_index", index)
        if index in self.fail_deletes:
            raise BackendError(f"unable to delete [{index}]", status_code=500)
        self._get(index)
        del self.indices[index]

    def open_index(self, index: str) -> None:
        self._record("open_index", index)
        self._get(index).closed = False

    def close_index(self, index: str) -> None:
        self._record("close_index", index)
        self._get(index).closed = True

    def refresh(self, index: str) -> None:
        self._record("refresh", index)

    def force_merge(self, index: str, max_num_segments: int) -> None:
        self._record("force_merge", index, max_num_segments)

    def count(self, index: str) -> int:
        with self._lock:
            return sum(len(self.indices[name].documents) for name in self._resolve(index))

    # settings and mapping

    def get_settings(self, index: str) -> Dict[str, Any]:
        return dict(self._get(index).settings)

    def set_settings(self, index: str, settings: Dict[str, Any]) -> None:
        self._record("set_settings", index, copy.deepcopy(settings))
        target = self._get(index)
        flat = flatten_settings(settings)
        if any(key.startswith("index.analysis.") for key in flat) and not target.closed:
            raise BackendError(f"Can't update non dynamic settings for open indices [{index}]", status_code=400,
                               error_type="illegal_argument_exception")
        target.settings.update(flat)

    def get_mapping(self, index: str) -> Dict[str, Any]:
        return copy.deepcopy(self._get(index).mapping)

    def put_mapping(self, index: str, mapping: Dict[str, Any]) -> None:
        self._record("put_mapping", index, copy.deepcopy(mapping))
        _merge_mapping(self._get(index).mapping, mapping)

    # aliases

    def get_indices_with_alias(self, alias: str) -> List[str]:
        return self.holders(alias)

    def update_aliases(self, actions: List[Dict]) -> None:
        self._record("update_aliases", copy.deepcopy(actions))
        for action in actions:
            (kind, target), = action.items()
            index = self._get(target["index"])
            if kind == "add":
                index.aliases.add(target["alias"])
            else:
                index.aliases.discard(target["alias"])

    # documents

    def bulk_create(self, index: str, documents: List[Tuple[str, Dict]]) -> int:
        with self._lock:
            target = self._get(index)
            conflicts = [{"_id": doc_id, "status": 409, "error": {"type": "version_conflict_engine_exception"}}
                         for doc_id, _ in documents if doc_id in target.documents]
            if conflicts:
                raise BulkWriteFailed(index, conflicts)
            for doc_id, source in documents:
                target.documents[doc_id] = source
            return len(documents)

    def _matches(self, doc_id: str, query: Dict) -> bool:
        script = query.get("bool", {}).get("filter", {}).get("script")
        if script is None:
            return True
        params = script["script"]["params"]
        return partition_of(doc_id, params["workers"]) == params["worker"]

    def open_scroll(self, index: str, query: Dict, size: int, window: str = "1h") -> ScrollPage:
        with self._lock:
            hits = []
            for name in self._resolve(index):
                hits.extend((doc_id, source) for doc_id, source in sorted(self.indices[name].documents.items())
                            if self._matches(doc_id, query))
            pages = [hits[i:i + size] for i in range(0, len(hits), size)]
            scroll_id = f"scroll-{next(self._scroll_ids)}"
            self.scrolls[scroll_id] = pages[1:]
            return ScrollPage(scroll_id=scroll_id, hits=pages[0] if pages else [], total=len(hits))

    def fetch_next(self, scroll_id: str, window: str = "1h") -> ScrollPage:
        with self._lock:
            if scroll_id in self.expired_scrolls or scroll_id not in self.scrolls:
                raise ScrollExpired(scroll_id)
            pages = self.scrolls[scroll_id]
            page = pages.pop(0) if pages else []
            return ScrollPage(scroll_id=scroll_id, hits=page, total=0)

    def clear_scroll(self, scroll_id: str) -> None:
        with self._lock:
            self._record("clear_scroll", scroll_id)
            self.scrolls.pop(scroll_id, None)

    # shards

    def shard_states(self, index: str) -> List[str]:
        self._record("shard_states", index)
        if self.shard_state_polls:
            return self.shard_state_polls.pop(0)
        settings = self._get(index).settings
        copies = int(settings["index.number_of_shards"]) * (1 + int(settings["index.number_of_replicas"]))
        return ["STARTED"] * copies
