"""Tests for the HTTP front end."""

import pytest
from fastapi.testclient import TestClient


class _Response:
    def __init__(self, data):
        self.data = data

    def to_dict(self):
        return self.data


class _Pipeline:
    def __init__(self, error=None, can_answer=True):
        self.error = error
        self.can_answer = can_answer
        self.calls = []

    async def search(self, question, context=None, enable_answer=False, now=None):
        self.calls.append(("search", question, context, enable_answer))
        if self.error:
            raise self.error
        return _Response({"llmAnswer": "answer" if enable_answer else None, "total": 0})

    async def search_paginated(self, question, context=None, page=1, page_size=None, now=None):
        self.calls.append(("paginated", question, context, page, page_size))
        if self.error:
            raise self.error
        return _Response({"page": page, "pageSize": page_size})


@pytest.fixture
def client(monkeypatch):
    from devintel import server

    def _make(pipeline):
        monkeypatch.setattr(server, "pipeline", pipeline)
        monkeypatch.setattr(server, "config", None)
        return TestClient(server.app)

    return _make


class TestHealth:
    def test_uninitialized(self, client):
        response = client(None).get("/health")

        assert response.status_code == 200
        assert response.json() == {
            "status": "healthy", "service": "devintel", "initialized": False, "answers_available": False,
        }

    def test_initialized(self, client):
        data = client(_Pipeline()).get("/health").json()
        assert data["initialized"] is True
        assert data["answers_available"] is True


class TestRagSearch:
    def test_success_maps_request_fields(self, client):
        pipeline = _Pipeline()
        response = client(pipeline).post("/rag-search", json={
            "question": "  How does Kafka scale?  ",
            "chunker": "READ-CONTENT-PARA",
            "useAuditedPocsOnly": True,
            "enableLLM": True,
            "pageSize": 40,
            "contentTypes": ["READ"],
            "email": "dev@example.com",
            "token": "tok",
        })

        assert response.status_code == 200
        assert response.json() == {"success": True, "data": {"llmAnswer": "answer", "total": 0}}

        _, question, context, enable_answer = pipeline.calls[0]
        assert question == "How does Kafka scale?"
        assert enable_answer is True
        assert context.app == "entwickler"
        assert context.chunker == "READ-CONTENT-PARA"
        assert context.use_audited_only is True
        assert context.page_size == 40
        assert context.content_types == ("READ",)
        assert context.user.email == "dev@example.com"
        assert context.token == "tok"

    @pytest.mark.parametrize("body", [{}, {"question": "   "}, {"question": "q", "pageSize": 0},
                                      {"question": "q", "pageSize": 501}])
    def test_bad_request(self, client, body):
        response = client(_Pipeline()).post("/rag-search", json=body)
        assert response.status_code == 400

    def test_not_initialized(self, client):
        assert client(None).post("/rag-search", json={"question": "q"}).status_code == 503

    def test_configuration_error_is_unavailable(self, client):
        from devintel.common.errors import ConfigurationError

        response = client(_Pipeline(error=ConfigurationError("no LLM"))).post(
            "/rag-search", json={"question": "q", "enableLLM": True},
        )
        assert response.status_code == 503
        assert response.json()["detail"] == "no LLM"

    def test_failure_is_500(self, client):
        from devintel.common.errors import SearchBranchError

        response = client(_Pipeline(error=SearchBranchError("Both search branches failed"))).post(
            "/rag-search", json={"question": "q"},
        )

        assert response.status_code == 500
        assert response.json() == {
            "success": False, "message": "Search failed", "error": "Both search branches failed",
        }


class TestPaginatedSearch:
    def test_success(self, client):
        pipeline = _Pipeline()
        response = client(pipeline).post("/rag-search/paginated", json={
            "question": "kafka", "page": 2, "pageSize": 10, "app": "devmio",
        })

        assert response.status_code == 200
        assert response.json()["data"] == {"page": 2, "pageSize": 10}
        _, _, context, page, page_size = pipeline.calls[0]
        assert context.app == "devmio"
        assert (page, page_size) == (2, 10)

    def test_page_below_one(self, client):
        response = client(_Pipeline()).post("/rag-search/paginated", json={"question": "kafka", "page": 0})
        assert response.status_code == 400

    def test_failure_is_500(self, client):
        response = client(_Pipeline(error=RuntimeError("boom"))).post(
            "/rag-search/paginated", json={"question": "kafka"},
        )
        assert response.status_code == 500
        assert response.json()["success"] is False
