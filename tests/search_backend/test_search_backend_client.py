"""Tests for the search backend HTTP client using httpx.MockTransport."""

import json

import httpx
import pytest

from card_search.errors import IndexNotFoundError, SearchBackendError, TaskTimeoutError
from card_search.search_backend import SearchBackendClient, task_uid_of


def _client(handler, **kwargs) -> SearchBackendClient:
    return SearchBackendClient(
        "http://search.test/",
        "secret",
        transport=httpx.MockTransport(handler),
        poll_interval=0.001,
        **kwargs,
    )


@pytest.mark.parametrize(
    "task,expected",
    [({"taskUid": 7}, 7), ({"uid": "3"}, 3), ({}, None), (None, None), ("7", None)],
)
def test_task_uid_of(task, expected):
    assert task_uid_of(task) == expected


@pytest.mark.asyncio
async def test_search_sends_auth_and_json():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["method"] = request.method
        seen["url"] = str(request.url)
        seen["auth"] = request.headers.get("Authorization")
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"hits": [{"id": "1"}], "estimatedTotalHits": 1})

    client = _client(handler)
    response = await client.search("cards", {"q": "elf", "limit": 5})
    await client.close()

    assert response["hits"] == [{"id": "1"}]
    assert seen == {
        "method": "POST",
        "url": "http://search.test/indexes/cards/search",
        "auth": "Bearer secret",
        "body": {"q": "elf", "limit": 5},
    }


@pytest.mark.asyncio
async def test_add_documents_passes_primary_key():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["params"] = dict(request.url.params)
        seen["body"] = json.loads(request.content)
        return httpx.Response(202, json={"taskUid": 11, "status": "enqueued"})

    client = _client(handler)
    task = await client.add_documents("cards", [{"id": "1"}], primary_key="id")

    assert task_uid_of(task) == 11
    assert seen == {"params": {"primaryKey": "id"}, "body": [{"id": "1"}]}


@pytest.mark.asyncio
async def test_delete_documents_stringifies_ids():
    bodies = []

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/indexes/cards/documents/delete-batch"
        bodies.append(json.loads(request.content))
        return httpx.Response(202, json={"taskUid": 1})

    await _client(handler).delete_documents("cards", [1, "2"])

    assert bodies == [["1", "2"]]


@pytest.mark.asyncio
async def test_index_not_found_is_typed():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            404, json={"message": "Index `cards_vsem` not found.", "code": "index_not_found"}
        )

    with pytest.raises(IndexNotFoundError) as exc_info:
        await _client(handler).get_index("cards_vsem")
    assert exc_info.value.status_code == 404
    assert exc_info.value.code == "index_not_found"
    assert "not found" in str(exc_info.value)


@pytest.mark.asyncio
async def test_federation_sort_error_message_is_preserved():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            400,
            json={
                "message": "Unknown field `sort` inside `.federation`",
                "code": "bad_request",
            },
        )

    with pytest.raises(SearchBackendError, match="Unknown field `sort` inside `.federation`"):
        await _client(handler).multi_search({"federation": {}, "queries": []})


@pytest.mark.asyncio
async def test_malformed_json_is_a_backend_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=b"<html>")

    with pytest.raises(SearchBackendError, match="malformed JSON"):
        await _client(handler).get_stats("cards")


@pytest.mark.asyncio
async def test_transport_errors_are_wrapped():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(SearchBackendError, match="connection refused"):
        await _client(handler).search("cards", {"q": ""})


class TestWaitForTask:
    @pytest.mark.asyncio
    async def test_polls_until_settled(self):
        statuses = iter(["enqueued", "processing", "succeeded"])
        polled = []

        def handler(request: httpx.Request) -> httpx.Response:
            polled.append(request.url.path)
            return httpx.Response(200, json={"uid": 5, "status": next(statuses)})

        status = await _client(handler).wait_for_task({"taskUid": 5})

        assert status["status"] == "succeeded"
        assert polled == ["/tasks/5"] * 3

    @pytest.mark.asyncio
    async def test_failed_task_raises(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200,
                json={
                    "status": "failed",
                    "error": {"message": "invalid document id", "code": "invalid_document_id"},
                },
            )

        with pytest.raises(SearchBackendError, match="invalid document id"):
            await _client(handler).wait_for_task({"taskUid": 9})

    @pytest.mark.asyncio
    async def test_timeout_raises_task_timeout(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"status": "processing"})

        with pytest.raises(TaskTimeoutError):
            await _client(handler).wait_for_task({"taskUid": 9}, timeout=0.01)

    @pytest.mark.asyncio
    async def test_no_task_uid_returns_none(self):
        def handler(request: httpx.Request) -> httpx.Response:  # pragma: no cover
            raise AssertionError("should not poll")

        assert await _client(handler).wait_for_task(None) is None


def test_from_config(config):
    client = SearchBackendClient.from_config(config)
    assert client.host == "http://search.test"
    assert client.task_timeout == config.task_timeout
