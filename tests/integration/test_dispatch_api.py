from __future__ import annotations

from datetime import timedelta

from social_push.utils.time import utc_now_naive


def _request(user_id: str = "alice", title: str = "New follower") -> dict:
    return {
        "user_id": user_id,
        "notification_type": "new_follower",
        "payload": {
            "title": title,
            "body": "Jo started following you",
            "data": {"type": "new_follower", "navigationTarget": "profile/jo"},
        },
    }


def test_dispatch_and_audit_flow(test_ctx) -> None:
    client = test_ctx["client"]
    client.post("/api/tokens", json={"user_id": "alice", "platform": "ios", "token": "tok-ios"})
    client.post("/api/tokens", json={"user_id": "alice", "platform": "android", "token": "tok-android"})
    test_ctx["gateway"].always_fail("tok-android", "UNREGISTERED")

    resp = client.post("/api/notifications/social", json=_request())
    assert resp.status_code == 200
    body = resp.json()
    assert body["sent_count"] == 1
    assert body["failed_count"] == 1
    assert body["outcome"] == "partial"
    assert body["errors"][0]["error_category"] == "invalid_token"

    tokens = client.get("/api/users/alice/tokens").json()
    assert [item["token"] for item in tokens] == ["tok-ios"]

    audit_resp = client.get("/api/audit", params={"user_id": "alice"})
    assert audit_resp.status_code == 200
    entries = audit_resp.json()
    assert len(entries) == 1
    assert entries[0]["delivered_count"] == 1
    assert entries[0]["failed_count"] == 1

    stats = client.get("/api/audit/stats").json()
    assert stats["total_notifications"] == 1
    assert stats["success_rate"] == 1.0

    export_resp = client.get("/api/audit/export")
    assert export_resp.status_code == 200
    assert export_resp.json()[0]["user_id"] == "alice"


def test_compliance_rejection_over_http(test_ctx) -> None:
    client = test_ctx["client"]
    client.post("/api/tokens", json={"user_id": "alice", "platform": "ios", "token": "tok-ios"})

    body = client.post("/api/notifications/social", json=_request(title="x" * 150)).json()

    assert body["outcome"] == "compliance_rejected"
    assert "title exceeds 100 characters" in body["violations"]
    assert test_ctx["gateway"].calls == []


def test_blank_user_dispatch_is_bad_request(test_ctx) -> None:
    resp = test_ctx["client"].post("/api/notifications/social", json=_request(user_id=" "))

    assert resp.status_code == 400


def test_rate_limit_counts_and_reset(test_ctx) -> None:
    client = test_ctx["client"]
    client.post("/api/notifications/social", json=_request())

    counts = client.get("/api/rate-limits/alice").json()
    assert counts["counts"]["minute"] == 1

    assert client.delete("/api/rate-limits/alice").status_code == 200
    assert client.get("/api/rate-limits/alice").json()["counts"]["minute"] == 0


def test_audit_range_requires_both_bounds(test_ctx) -> None:
    resp = test_ctx["client"].get("/api/audit", params={"start": "2026-01-01T00:00:00"})

    assert resp.status_code == 400


def test_audit_range_accepts_mixed_offset_bounds(test_ctx) -> None:
    client = test_ctx["client"]
    resp = client.get("/api/audit", params={"start": "2026-01-01T00:00:00Z", "end": "2026-01-02T00:00:00"})
    assert resp.status_code == 200
    assert resp.json() == []

    client.post("/api/tokens", json={"user_id": "alice", "platform": "ios", "token": "tok-ios"})
    client.post("/api/notifications/social", json=_request())
    now = utc_now_naive()
    resp = client.get(
        "/api/audit",
        params={
            "start": (now - timedelta(hours=1)).isoformat() + "+00:00",
            "end": (now + timedelta(hours=1)).isoformat(),
        },
    )
    assert resp.status_code == 200
    assert [entry["user_id"] for entry in resp.json()] == ["alice"]


def test_audit_range_compares_offsets_in_utc(test_ctx) -> None:
    # 01:00+02:00 is 23:00 UTC the previous day, so it precedes the naive end.
    resp = test_ctx["client"].get(
        "/api/audit", params={"start": "2026-01-02T01:00:00+02:00", "end": "2026-01-01T23:30:00"}
    )
    assert resp.status_code == 200

    resp = test_ctx["client"].get(
        "/api/audit", params={"start": "2026-01-02T01:00:00-02:00", "end": "2026-01-02T00:00:00"}
    )
    assert resp.status_code == 400


def test_error_rate_metrics_reflect_deliveries(test_ctx) -> None:
    client = test_ctx["client"]
    client.post("/api/tokens", json={"user_id": "alice", "platform": "ios", "token": "tok-ios"})
    client.post("/api/tokens", json={"user_id": "alice", "platform": "android", "token": "tok-android"})
    test_ctx["gateway"].always_fail("tok-android", "UNREGISTERED")

    client.post("/api/notifications/social", json=_request())
    stats = client.get("/api/metrics/error-rate").json()

    assert stats["total_attempts"] == 2
    assert stats["total_errors"] == 1
    assert stats["error_rate"] == 50.0
    assert stats["medium_severity_errors"] == 1
