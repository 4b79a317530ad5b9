"""HTTP contract tests: routes, auth and normalized error shape."""
from accessledger.features.store import service as store


def _grant(client, admin_headers, user_id="u1", product_id="p1", usage_limit=2, days=30):
    return client.put(
        f"/v1/grants/{user_id}/{product_id}",
        headers=admin_headers,
        json={"usage_limit": usage_limit, "access_period_days": days},
    )


def test_admin_can_grant(client, admin_headers):
    resp = _grant(client, admin_headers)
    assert resp.status_code == 200
    body = resp.json()
    assert body["user_id"] == "u1"
    assert body["usage_limit"] == 2
    assert body["usage_count"] == 0
    assert body["is_active"] is True
    assert store.get("u1", "p1") is not None


def test_grant_requires_admin(client):
    resp = client.put(
        "/v1/grants/u1/p1",
        headers={"X-User-Id": "u1"},
        json={"usage_limit": 2, "access_period_days": 30},
    )
    assert resp.status_code == 403
    body = resp.json()
    assert body["error"]["code"] == "forbidden"
    assert body["error"]["request_id"] == resp.headers.get("x-request-id")


def test_wrong_admin_key_is_not_admin(client):
    resp = client.put(
        "/v1/grants/u1/p1",
        headers={"X-User-Id": "u1", "X-Admin-Key": "guess"},
        json={"usage_limit": 2, "access_period_days": 30},
    )
    assert resp.status_code == 403


def test_missing_principal_is_unauthenticated(client):
    resp = client.post("/v1/access/check", json={"product_id": "p1"})
    assert resp.status_code == 401
    body = resp.json()
    assert body["error"]["code"] == "unauthenticated"
    assert body["detail"] == body["error"]["message"]


def test_access_check_consumes_and_denials_are_200(client, admin_headers):
    _grant(client, admin_headers, usage_limit=1)
    headers = {"X-User-Id": "u1"}

    first = client.post("/v1/access/check", headers=headers, json={"product_id": "p1", "consuming": True})
    second = client.post("/v1/access/check", headers=headers, json={"product_id": "p1", "consuming": True})

    assert first.status_code == 200
    assert first.json() == {"state": "ACTIVE", "remaining_usage": 0, "remaining_days": 30, "allowed": True}
    assert second.status_code == 200
    assert second.json()["state"] == "QUOTA_EXCEEDED"
    assert second.json()["allowed"] is False


def test_access_check_for_unknown_product(client):
    resp = client.post("/v1/access/check", headers={"X-User-Id": "u1"}, json={"product_id": "p9"})
    assert resp.status_code == 200
    assert resp.json()["state"] == "NO_GRANT"


def test_admin_access_check_bypasses(client, admin_headers):
    resp = client.post("/v1/access/check", headers=admin_headers, json={"product_id": "p9", "consuming": True})
    assert resp.json()["state"] == "ACTIVE"


def test_revoke_then_not_found(client, admin_headers):
    _grant(client, admin_headers)

    first = client.delete("/v1/grants/u1/p1", headers=admin_headers)
    second = client.delete("/v1/grants/u1/p1", headers=admin_headers)

    assert first.status_code == 200
    assert first.json()["outcome"] == "SUCCESS"
    assert first.json()["remaining_grants"] == 0
    assert second.status_code == 404
    assert second.json()["error"]["code"] == "not_found"


def test_grant_details_visible_to_owner_only(client, admin_headers):
    _grant(client, admin_headers)

    own = client.get("/v1/grants/u1/p1", headers={"X-User-Id": "u1"})
    other = client.get("/v1/grants/u1/p1", headers={"X-User-Id": "u2"})
    missing = client.get("/v1/grants/u1/p2", headers=admin_headers)

    assert own.status_code == 200
    assert own.json()["remaining_usage"] == 2
    assert own.json()["is_expired"] is False
    assert other.status_code == 403
    assert missing.status_code == 404


def test_grant_body_validation(client, admin_headers):
    resp = client.put(
        "/v1/grants/u1/p1",
        headers=admin_headers,
        json={"usage_limit": -1, "access_period_days": 30},
    )
    assert resp.status_code == 422


def test_user_and_product_listings(client, admin_headers):
    _grant(client, admin_headers, user_id="u1", product_id="p1")
    _grant(client, admin_headers, user_id="u2", product_id="p1")

    mine = client.get("/v1/users/u1/grants", headers={"X-User-Id": "u1"})
    theirs = client.get("/v1/users/u2/grants", headers={"X-User-Id": "u1"})
    by_product = client.get("/v1/products/p1/grants", headers=admin_headers)
    by_product_user = client.get("/v1/products/p1/grants", headers={"X-User-Id": "u1"})

    assert [g["product_id"] for g in mine.json()] == ["p1"]
    assert theirs.status_code == 403
    assert sorted(g["user_id"] for g in by_product.json()) == ["u1", "u2"]
    assert by_product_user.status_code == 403


def test_request_id_is_echoed(client):
    resp = client.get("/healthz", headers={"x-request-id": "rid-123"})
    assert resp.status_code == 200
    assert resp.headers["x-request-id"] == "rid-123"


def test_readyz_reports_ready(client):
    resp = client.get("/readyz")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


def test_metrics_exposition(client):
    client.post("/v1/access/check", headers={"X-User-Id": "u1"}, json={"product_id": "p1"})
    resp = client.get("/metrics")
    assert resp.status_code == 200
    assert 'access_decisions_total{state="NO_GRANT",consuming="false"} 1.0' in resp.text
    assert "http_requests_total" in resp.text
