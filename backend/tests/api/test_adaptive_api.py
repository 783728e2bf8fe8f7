"""API tests for the feedback, retrieval and state endpoints."""

import pytest
from fastapi.testclient import TestClient

from adaptive_rag_backend.main import create_app

FRAGMENTS = [
    {"content": "thompson sampling chooses retrieval parameters", "source_id": "doc-ts"},
    {"content": "beta posteriors are updated by verdicts", "source_id": "doc-beta"},
    {"content": "unrelated gardening tips", "source_id": "doc-garden"},
]
QUESTION = "thompson sampling beta posteriors verdicts"


@pytest.fixture
def make_client(monkeypatch: pytest.MonkeyPatch):
    """Build a TestClient against a freshly configured app."""
    monkeypatch.setattr("adaptive_rag_backend.config.load_dotenv", lambda: None)

    def _make(**env: str) -> TestClient:
        for name, value in env.items():
            monkeypatch.setenv(name, value)
        return TestClient(create_app())

    return _make


def _drain(client: TestClient) -> None:
    """Wait for verdict handlers to finish on the app's event loop."""
    client.portal.call(client.app.state.adaptive_loop.bus.join)


def test_health(make_client) -> None:
    with make_client() as client:
        response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "feedback_loop": True}


def test_feedback_loop_end_to_end(make_client) -> None:
    with make_client() as client:
        indexed = client.post("/api/v1/fragments", json={"fragments": FRAGMENTS})
        assert indexed.status_code == 201
        assert indexed.json()["data"] == {"indexed": 3, "total": 3}

        prepared = client.post(
            "/api/v1/retrieval/prepare", json={"query": QUESTION, "query_id": "q-1"}
        ).json()["data"]
        assert prepared["cached"] is None
        assert {source["source_id"] for source in prepared["sources"]} == {"doc-ts", "doc-beta"}

        registered = client.post(
            "/api/v1/answers",
            json={
                "query_id": "q-1",
                "question": QUESTION,
                "answer": "Arms learn from verdicts.",
                "sources": prepared["sources"],
            },
        )
        assert registered.status_code == 201

        verdict = client.post(
            "/api/v1/feedback", json={"query_id": "q-1", "verdict": "up", "tags": ["helpful", " "]}
        )
        assert verdict.status_code == 202
        body = verdict.json()
        assert body["data"]["verdict"] == "up"
        assert body["data"]["tags"] == ["helpful"]
        assert "requestId" in body["meta"]
        _drain(client)

        state = client.get(
            "/api/v1/bandit/state", params={"cluster": prepared["cluster"]}
        ).json()["data"]
        arms = {arm["arm_id"]: arm for arm in state["arms"]}
        assert arms[prepared["arm_id"]]["alpha"] == 2.0
        assert arms[prepared["arm_id"]]["beta"] == 1.0

        stats = client.get("/api/v1/cache/stats").json()["data"]
        assert stats["entries"] == 1
        assert stats["mapped_queries"] == 1

        again = client.post(
            "/api/v1/retrieval/prepare", json={"query": QUESTION, "query_id": "q-2"}
        ).json()["data"]
        assert again["cached"]["answer"] == "Arms learn from verdicts."
        assert again["cached"]["similarity"] == 1.0


def test_choose_params(make_client) -> None:
    with make_client() as client:
        response = client.post(
            "/api/v1/retrieval/params", json={"query": "what is mmr?", "query_id": "q-7"}
        )

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["query_id"] == "q-7"
    assert data["cluster"].startswith("qcluster-")
    assert set(data["params"]) == {"top_k", "mmr_lambda", "min_score"}


def test_bandit_state_defaults_to_default_cluster(make_client) -> None:
    with make_client() as client:
        data = client.get("/api/v1/bandit/state").json()["data"]

    assert data["cluster"] == "default"
    assert len(data["arms"]) == 4
    assert all(arm["mean"] == 0.5 for arm in data["arms"])


def test_get_registered_answer(make_client) -> None:
    with make_client() as client:
        client.post(
            "/api/v1/answers",
            json={"query_id": "q-9", "question": "q", "answer": "a", "sources": []},
        )
        found = client.get("/api/v1/answers/q-9")
        missing = client.get("/api/v1/answers/q-404")

    assert found.status_code == 200
    assert found.json()["data"]["answer"] == "a"
    assert missing.status_code == 404
    problem = missing.json()
    assert problem["type"].endswith("/query-context-not-found")
    assert problem["instance"] == "/api/v1/answers/q-404"


@pytest.mark.parametrize(
    "payload",
    [
        {"query_id": "q-1", "verdict": "maybe"},
        {"query_id": "bad id!", "verdict": "up"},
        {"verdict": "up"},
    ],
)
def test_feedback_validation(make_client, payload) -> None:
    with make_client() as client:
        response = client.post("/api/v1/feedback", json=payload)

    assert response.status_code == 422


def test_feedback_rejected_when_loop_disabled(make_client) -> None:
    with make_client(FEEDBACK_LOOP_ENABLED="false") as client:
        response = client.post("/api/v1/feedback", json={"query_id": "q-1", "verdict": "up"})
        health = client.get("/health").json()

    assert response.status_code == 503
    assert response.json()["title"] == "Feedback Disabled"
    assert health["feedback_loop"] is False


def test_request_size_limit(make_client) -> None:
    with make_client(REQUEST_MAX_BYTES="16") as client:
        response = client.post(
            "/api/v1/retrieval/params", json={"query": "a question longer than sixteen bytes"}
        )

    assert response.status_code == 413


def test_metrics_endpoint(make_client) -> None:
    with make_client(METRICS_ENABLED="true") as client:
        client.post("/api/v1/retrieval/params", json={"query": "what is mmr?"})
        response = client.get("/metrics")

    assert response.status_code == 200
    assert "bandit_selections_total" in response.text
    assert "answer_cache_entries" in response.text


def test_document_feedback_reaches_doc_subscribers(make_client) -> None:
    with make_client() as client:
        bus = client.app.state.adaptive_loop.bus
        received = []
        client.portal.call(bus.subscribe_doc_feedback, received.append, "doc-audit")

        response = client.post(
            "/api/v1/feedback/documents",
            json={
                "query_id": "q-1",
                "verdict": "down",
                "reason": "Not relevant",
                "fragment": FRAGMENTS[2],
            },
        )
        _drain(client)

    assert response.status_code == 202
    data = response.json()["data"]
    assert data["source"] == "doc-garden"
    assert data["reason"] == "Not relevant"
    assert [event.fragment.source_id for event in received] == ["doc-garden"]


def test_document_feedback_validation(make_client) -> None:
    with make_client() as client:
        response = client.post(
            "/api/v1/feedback/documents",
            json={"verdict": "up", "reason": "Because", "fragment": FRAGMENTS[0]},
        )

    assert response.status_code == 422
