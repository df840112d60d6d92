import json
from unittest.mock import MagicMock

from errors import SearchUnavailableError
from search import SearchService, build_filter, build_sort
from search_client import PROJECTS_INDEX, MeilisearchApiError


def test_build_filter():
    assert build_filter() is None
    assert build_filter(voicebank="vb1") == 'voicebank_id = "vb1"'
    assert build_filter(voicebank="vb1", creator="u2", tags="3, 5,,") == (
        'voicebank_id = "vb1" AND creator_id = "u2" AND tag_ids = "3" AND tag_ids = "5"'
    )


def test_build_filter_escapes_quotes():
    assert build_filter(creator='x" OR status = "0') == 'creator_id = "x\\" OR status = \\"0"'


def test_build_sort():
    assert build_sort(None) is None
    assert build_sort("likes_desc") == ["likes_count:desc"]
    assert build_sort("plays_asc,tempo_desc") == ["plays:asc", "tempo:desc"]
    assert build_sort("likes_count_asc") == ["likes_count:asc"]
    assert build_sort("plays,bogus_up") is None


def test_search_projects(client, search_client):
    search_client.search.return_value = {
        "hits": [{"id": "p1", "title": "Spring Song"}],
        "estimatedTotalHits": 1,
        "processingTimeMs": 2,
        "facetDistribution": None,
    }

    response = client.get("/search/projects", params={
        "q": "spring", "limit": 1, "voicebank": "vb1", "sort": "likes_desc", "tags": "4",
    })
    assert response.status_code == 200
    body = response.json()
    assert body["hits"] == [{"id": "p1", "title": "Spring Song"}]
    assert body["query"] == "spring"
    assert body["totalHits"] == 1
    assert body["pagination"] == {"offset": 0, "limit": 1, "hasNext": True}

    index_name, query, options = search_client.search.call_args.args
    assert index_name == PROJECTS_INDEX
    assert query == "spring"
    assert options["filter"] == 'voicebank_id = "vb1" AND tag_ids = "4"'
    assert options["sort"] == ["likes_count:desc"]
    assert options["highlightPreTag"] == "<mark>"
    assert options["cropLength"] == 100


def test_search_without_query_uses_empty_string(client, search_client):
    body = client.get("/search/projects").json()
    assert body["query"] is None
    assert body["pagination"] == {"offset": 0, "limit": 20, "hasNext": False}
    assert search_client.search.call_args.args[1] == ""


def test_search_engine_down_is_service_unavailable(client, search_client):
    search_client.is_available.side_effect = SearchUnavailableError("connection refused")
    response = client.get("/search/projects", params={"q": "x"})
    assert response.status_code == 503
    assert response.json()["error"] == "Service unavailable"


def test_search_engine_not_ready(client, search_client):
    search_client.is_available.return_value = False
    assert client.get("/search/projects").status_code == 503


def test_search_index_not_configured(client, search_client):
    search_client.get_stats.side_effect = MeilisearchApiError(404, "index_not_found", "Index not found")
    response = client.get("/search/projects")
    assert response.status_code == 500
    assert response.json()["error"] == "Index not configured"


def test_search_rejects_negative_limit(client):
    assert client.get("/search/projects", params={"limit": -1}).status_code == 422


def test_suggest(client, search_client):
    search_client.search.return_value = {"hits": [
        {"id": "p1", "title": "Spring Song", "creator": "Bob Durand", "voicebank_name": "Teto",
         "_formatted": {"title": "<mark>Spr</mark>ing Song"}},
        {"id": "p2", "title": "Spark", "creator": "Alice Martin", "voicebank_name": ""},
    ]}

    body = client.get("/search/projects/suggest", params={"q": "sp"}).json()
    assert body["suggestions"] == [
        {"id": "p1", "title": "Spring Song", "creator": "Bob Durand", "voicebank": "Teto",
         "highlighted": "<mark>Spr</mark>ing Song"},
        {"id": "p2", "title": "Spark", "creator": "Alice Martin", "voicebank": "", "highlighted": "Spark"},
    ]
    assert search_client.search.call_args.args[2]["limit"] == 5


def test_suggest_empty_query(client, search_client):
    assert client.get("/search/projects/suggest").json() == {"suggestions": []}
    search_client.search.assert_not_called()


def test_search_results_are_cached(search_client):
    redis_client = MagicMock()
    redis_client.get.return_value = None
    service = SearchService(search_client, redis_client, cache_ttl=30)

    result = service.search_projects("song", limit=10, offset=0)

    key, ttl, payload = redis_client.setex.call_args.args
    assert key.startswith("search:projects:")
    assert ttl == 30
    assert json.loads(payload) == result

    redis_client.get.return_value = payload
    search_client.search.reset_mock()
    assert service.search_projects("song", limit=10, offset=0) == result
    search_client.search.assert_not_called()


def test_cache_failures_are_ignored(search_client):
    redis_client = MagicMock()
    redis_client.get.side_effect = ConnectionError("redis down")
    redis_client.setex.side_effect = ConnectionError("redis down")
    service = SearchService(search_client, redis_client, cache_ttl=30)

    assert service.search_projects("song", limit=10, offset=0)["hits"] == []
