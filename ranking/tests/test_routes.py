"""HTTP surface, exercised through FastAPI's TestClient."""

from datetime import datetime, timedelta

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

import db
from conftest import AS_OF, add_opportunity, add_students, application, assessment, full_profile
from ranking import routes
from ranking.logic.contracts import JobResult


@pytest.fixture
def client(session_factory, monkeypatch):
    # Requests go through the real get_session -> db.get_db chain, on the test database
    monkeypatch.setattr(db, "SessionLocal", session_factory)
    app = FastAPI()
    app.include_router(routes.router)
    return TestClient(app)


@pytest.fixture
def ranked(client, session_factory, ranking_engine):
    add_students(session_factory, [("a", "c1", "ka"), ("b", "c1", "ka"), ("c", "c2", "tn")])
    response = client.post(
        "/ranking/events",
        json=full_profile("a", 90, 80, 70) + full_profile("b", 85, 85, 85) + full_profile("c", 50, 50, 50),
    )
    assert response.status_code == 200
    ranking_engine.run_rank_cycles(AS_OF)
    return client


def test_health(client):
    assert client.get("/ranking/health").json()["status"] == "ok"


def test_post_single_event(client):
    response = client.post("/ranking/events", json=assessment("s1", "technical", 70, event_id="e-1"))
    assert response.json() == {"stored": 1, "duplicates": 0}

    again = client.post("/ranking/events", json=assessment("s1", "technical", 70, event_id="e-1"))
    assert again.json() == {"stored": 0, "duplicates": 1}


def test_invalid_event_is_a_bad_request(client):
    response = client.post("/ranking/events", json={"type": "page_view", "timestamp": "2026-10-19T00:00:00"})
    assert response.status_code == 400
    assert response.json()["detail"]["error_type"] == "ValidationError"


def test_rejected_batch_stores_nothing(client):
    response = client.post("/ranking/events", json=[
        assessment("s1", "technical", 70, event_id="e-1"),
        assessment("s1", "technical", 140, event_id="e-2"),
    ])
    assert response.status_code == 400

    retry = client.post("/ranking/events", json=assessment("s1", "technical", 70, event_id="e-1"))
    assert retry.json() == {"stored": 1, "duplicates": 0}


def test_rank_lookup(ranked):
    body = ranked.get("/ranking/ranks/national/all/a").json()

    assert body["rank"] == 2
    assert body["composite_score"] == 81.0
    assert body["movement"] == "new"
    assert body["total_in_scope"] == 3
    assert body["period_id"] == "2026-10-19"
    assert body["last_updated"]


def test_missing_rank_is_404(ranked):
    assert ranked.get("/ranking/ranks/national/all/zed").status_code == 404
    assert ranked.get("/ranking/ranks/college/unknown/a").status_code == 404


def test_unknown_scope_is_rejected(ranked):
    assert ranked.get("/ranking/ranks/galaxy/all/a").status_code == 422


def test_leaderboard_and_paging_errors(ranked):
    body = ranked.get("/ranking/leaderboards/college/c1", params={"limit": 1}).json()
    assert [e["student_id"] for e in body["entries"]] == ["b"]
    assert body["total_in_scope"] == 2

    assert ranked.get("/ranking/leaderboards/national/all", params={"limit": 0}).status_code == 400


def test_nearby_and_summary(ranked):
    nearby = ranked.get("/ranking/leaderboards/national/all/a/nearby", params={"range": 1}).json()
    assert [e["student_id"] for e in nearby["above"]] == ["b"]
    assert [e["student_id"] for e in nearby["below"]] == ["c"]

    summary = ranked.get("/ranking/students/a/summary").json()
    assert [s["scope"] for s in summary["standings"]] == ["college", "state", "national"]
    assert summary["standings"][0]["points_to_next"] == 4.0


def test_scarcity_view(client, session_factory, ranking_engine):
    add_opportunity(session_factory, "opp-1", total_spots=4, deadline=AS_OF + timedelta(days=10))
    client.post("/ranking/events", json=[
        application("application_submitted", "s1", "opp-1", AS_OF - timedelta(hours=3), collegeId="c1"),
        application("application_submitted", "s2", "opp-1", AS_OF - timedelta(hours=3), collegeId="c2"),
    ])
    ranking_engine.run_scarcity_cycle(AS_OF)

    body = client.get("/ranking/opportunities/opp-1/scarcity", params={"viewer_college_id": "c1"}).json()
    assert body["total_applications"] == 2
    assert body["applications_from_your_college"] == 1
    assert body["closing_in"] == {"type": "time", "hours": 240}
    assert body["spots_remaining"] == 4
    assert body["urgency"] == "medium"

    assert client.get("/ranking/opportunities/opp-9/scarcity").status_code == 404


def test_jobs_require_cron_secret_in_production(client, monkeypatch):
    monkeypatch.setattr(routes, "APP_ENV", "production")
    monkeypatch.setattr(routes, "CRON_SECRET", "s3cret")
    calls = []

    def fake_run_job(name, **kwargs):
        calls.append((name, kwargs))
        return JobResult(job_name=name, success=True, processed_count=3, timestamp=datetime(2026, 10, 19))

    monkeypatch.setattr(routes, "run_job", fake_run_job)

    assert client.post("/ranking/jobs/leaderboard_update").status_code == 401
    assert client.post(
        "/ranking/jobs/leaderboard_update", headers={"x-cron-secret": "wrong"}
    ).status_code == 401

    response = client.post("/ranking/jobs/leaderboard_update", headers={"x-cron-secret": "s3cret"})
    assert response.status_code == 200
    assert response.json()["processed_count"] == 3
    # HTTP triggers never sit in the backoff loop
    assert calls == [("leaderboard_update", {"max_attempts": 1})]


def test_unknown_job_is_404(client):
    assert client.post("/ranking/jobs/nightly_cleanup").status_code == 404


def test_job_history(ranked):
    body = ranked.get("/ranking/jobs/history", params={"kind": "ranks", "limit": 50}).json()
    assert {c["scope"] for c in body["cycles"]} == {"college", "state", "national"}
    assert all(c["kind"] == "ranks" for c in body["cycles"])


def test_college_leaderboard(client, session_factory):
    add_students(session_factory, [("a", "c1", "ka"), ("b", "c2", "ka"), ("c", "c2", "ka")])
    client.post("/ranking/events", json=[
        application("offer_accepted", "b", "opp-1", datetime(2024, 5, 1)),
        application("offer_accepted", "c", "opp-1", datetime(2024, 5, 1)),
    ])

    body = client.get(
        "/ranking/college-leaderboards/state/ka", params={"viewer_college_id": "c1"}
    ).json()
    assert [e["college_id"] for e in body["entries"]] == ["c2", "c1"]
    assert body["your_college_rank"] == 2
    assert body["gap_to_next"] == {"college_id": "c2", "gap": 3}

    assert client.get("/ranking/college-leaderboards/college/c1").status_code == 400
    assert client.get("/ranking/college-leaderboards/national/all?metric=salary").status_code == 422