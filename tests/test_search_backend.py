import json

import pytest
import requests

from index_updater.models.cluster import AuthMethod
from index_updater.models.search_backend import BackendError, BulkWriteFailed, IndexStatus, ScrollExpired, \
    SearchBackend
from tests.utils import create_valid_cluster


@pytest.fixture
def backend():
    return SearchBackend(create_valid_cluster(endpoint="http://localhost:9200", auth_type=AuthMethod.NO_AUTH))


ENDPOINT = "http://localhost:9200"


def test_list_indices_reads_open_and_closed(requests_mock, backend):
    requests_mock.get(f"{ENDPOINT}/_cat/indices/*", json=[
        {"index": "wiki_content_first", "status": "open"},
        {"index": "wiki_general_first", "status": "close"},
    ])
    assert backend.list_indices() == {
        "wiki_content_first": IndexStatus.OPEN,
        "wiki_general_first": IndexStatus.CLOSED,
    }
    assert requests_mock.last_request.qs["expand_wildcards"] == ["all"]


def test_index_status_missing_on_404(requests_mock, backend):
    requests_mock.get(f"{ENDPOINT}/_cat/indices/wiki_content_first", status_code=404,
                      json={"error": {"type": "index_not_found_exception", "reason": "no such index"}})
    assert backend.index_status("wiki_content_first") == IndexStatus.MISSING
    assert not backend.index_exists("wiki_content_first")


def test_index_status_does_not_count_alias_as_index(requests_mock, backend):
    requests_mock.get(f"{ENDPOINT}/_cat/indices/wiki_content", json=[
        {"index": "wiki_content_123", "status": "open"},
    ])
    assert backend.index_status("wiki_content") == IndexStatus.MISSING


def test_get_settings_is_flat(requests_mock, backend):
    requests_mock.get(f"{ENDPOINT}/wiki_content_first/_settings", json={
        "wiki_content_first": {"settings": {"index.number_of_shards": "4", "index.number_of_replicas": "1"}}
    })
    assert backend.get_settings("wiki_content_first") == {"index.number_of_shards": "4",
                                                          "index.number_of_replicas": "1"}
    assert requests_mock.last_request.qs["flat_settings"] == ["true"]


def test_set_replica_count(requests_mock, backend):
    requests_mock.put(f"{ENDPOINT}/wiki_content_first/_settings", json={"acknowledged": True})
    backend.set_replica_count("wiki_content_first", 2)
    assert requests_mock.last_request.json() == {"index": {"number_of_replicas": 2}}


def test_get_mapping(requests_mock, backend):
    requests_mock.get(f"{ENDPOINT}/wiki_content_first/_mapping", json={
        "wiki_content_first": {"mappings": {"properties": {"title": {"type": "text"}}}}
    })
    assert backend.get_mapping("wiki_content_first") == {"properties": {"title": {"type": "text"}}}


def test_put_mapping_rejection_carries_backend_reason(requests_mock, backend):
    requests_mock.put(f"{ENDPOINT}/wiki_content_first/_mapping", status_code=400, json={
        "error": {"type": "illegal_argument_exception",
                  "reason": "mapper [title] cannot be changed from type [text] to [keyword]"},
        "status": 400,
    })
    with pytest.raises(BackendError) as excinfo:
        backend.put_mapping("wiki_content_first", {"properties": {"title": {"type": "keyword"}}})
    assert excinfo.value.status_code == 400
    assert excinfo.value.error_type == "illegal_argument_exception"
    assert "cannot be changed from type [text] to [keyword]" in str(excinfo.value)


def test_connection_error_becomes_backend_error(requests_mock, backend):
    requests_mock.get(f"{ENDPOINT}/wiki_content_first/_count", exc=requests.exceptions.ConnectTimeout)
    with pytest.raises(BackendError) as excinfo:
        backend.count("wiki_content_first")
    assert "ConnectTimeout" in str(excinfo.value)


def test_get_indices_with_alias(requests_mock, backend):
    requests_mock.get(f"{ENDPOINT}/_alias/wiki_content", json={
        "wiki_content_2": {"aliases": {"wiki_content": {}}},
        "wiki_content_1": {"aliases": {"wiki_content": {}}},
    })
    assert backend.get_indices_with_alias("wiki_content") == ["wiki_content_1", "wiki_content_2"]


def test_get_indices_with_alias_none_on_404(requests_mock, backend):
    requests_mock.get(f"{ENDPOINT}/_alias/wiki_content", status_code=404,
                      json={"error": "alias [wiki_content] missing", "status": 404})
    assert backend.get_indices_with_alias("wiki_content") == []


def test_swap_alias_is_one_request(requests_mock, backend):
    requests_mock.post(f"{ENDPOINT}/_aliases", json={"acknowledged": True})
    backend.swap_alias("wiki_content", "wiki_content_2", ["wiki_content_1", "wiki_content_2"])
    assert requests_mock.call_count == 1
    assert requests_mock.last_request.json() == {"actions": [
        {"add": {"index": "wiki_content_2", "alias": "wiki_content"}},
        {"remove": {"index": "wiki_content_1", "alias": "wiki_content"}},
    ]}


def test_bulk_create_sends_ndjson_create_actions(requests_mock, backend):
    requests_mock.post(f"{ENDPOINT}/_bulk", json={"took": 3, "errors": False, "items": []})
    written = backend.bulk_create("wiki_content_2", [("1", {"title": "One"}), ("2", {"title": "Two"})])
    assert written == 2
    lines = requests_mock.last_request.body.decode("utf-8").strip().split("\n")
    assert [json.loads(line) for line in lines] == [
        {"create": {"_index": "wiki_content_2", "_id": "1"}},
        {"title": "One"},
        {"create": {"_index": "wiki_content_2", "_id": "2"}},
        {"title": "Two"},
    ]
    assert requests_mock.last_request.headers["Content-Type"] == "application/x-ndjson"


def test_bulk_create_conflict_fails_loudly(requests_mock, backend):
    requests_mock.post(f"{ENDPOINT}/_bulk", json={"took": 3, "errors": True, "items": [
        {"create": {"_id": "1", "status": 201}},
        {"create": {"_id": "2", "status": 409, "error": {"type": "version_conflict_engine_exception"}}},
    ]})
    with pytest.raises(BulkWriteFailed) as excinfo:
        backend.bulk_create("wiki_content_2", [("1", {}), ("2", {})])
    assert excinfo.value.failures == [
        {"_id": "2", "status": 409, "error": {"type": "version_conflict_engine_exception"}}
    ]


def test_open_scroll_and_fetch_next(requests_mock, backend):
    requests_mock.post(f"{ENDPOINT}/wiki_content/_search", json={
        "_scroll_id": "abc",
        "hits": {"total": {"value": 3, "relation": "eq"}, "hits": [
            {"_id": "1", "_source": {"title": "One"}},
            {"_id": "2", "_source": {"title": "Two"}},
        ]},
    })
    requests_mock.post(f"{ENDPOINT}/_search/scroll", json={
        "_scroll_id": "abc",
        "hits": {"total": {"value": 3, "relation": "eq"}, "hits": [{"_id": "3", "_source": {"title": "Three"}}]},
    })
    page = backend.open_scroll("wiki_content", {"match_all": {}}, size=2)
    assert page.total == 3
    assert page.hits == [("1", {"title": "One"}), ("2", {"title": "Two"})]
    assert requests_mock.request_history[0].qs["scroll"] == ["1h"]

    page = backend.fetch_next(page.scroll_id)
    assert page.hits == [("3", {"title": "Three"})]
    assert requests_mock.last_request.json() == {"scroll": "1h", "scroll_id": "abc"}


def test_fetch_next_on_expired_cursor(requests_mock, backend):
    requests_mock.post(f"{ENDPOINT}/_search/scroll", status_code=404, json={
        "error": {"type": "search_context_missing_exception", "reason": "No search context found"}
    })
    with pytest.raises(ScrollExpired):
        backend.fetch_next("abc")


def test_clear_scroll_failure_is_only_logged(requests_mock, backend):
    requests_mock.delete(f"{ENDPOINT}/_search/scroll", exc=requests.exceptions.ConnectionError)
    backend.clear_scroll("abc")


def test_shard_states(requests_mock, backend):
    requests_mock.get(f"{ENDPOINT}/_cat/shards/wiki_content_2", json=[
        {"index": "wiki_content_2", "shard": "0", "prirep": "p", "state": "STARTED"},
        {"index": "wiki_content_2", "shard": "0", "prirep": "r", "state": "INITIALIZING"},
    ])
    assert backend.shard_states("wiki_content_2") == ["STARTED", "INITIALIZING"]


def test_force_merge(requests_mock, backend):
    requests_mock.post(f"{ENDPOINT}/wiki_content_2/_forcemerge", json={"_shards": {}})
    backend.force_merge("wiki_content_2", 5)
    assert requests_mock.last_request.qs["max_num_segments"] == ["5"]
