def test_health_root(client):
    res = client.get("/health")
    assert res.status_code == 200
    assert res.json() == {"ok": True}

def test_health_commerce_up(client, monkeypatch):
    async def fake_info(http):
        return {"ok": True, "url": "http://commerce.test", "status": 200}

    monkeypatch.setattr("storefront.health.router.commerce_health_info", fake_info)
    res = client.get("/health/commerce")
    assert res.status_code == 200
    assert res.json()["ok"] is True

def test_health_commerce_down(client, monkeypatch):
    async def fake_info(http):
        return {"ok": False, "url": "http://commerce.test", "status": None, "error": "refused"}

    monkeypatch.setattr("storefront.health.router.commerce_health_info", fake_info)
    assert client.get("/health/commerce").status_code == 503

def test_health_rate_limit_disabled_in_tests(client):
    info = client.get("/health/rate-limit").json()
    assert info["enabled"] is False

def test_security_headers(client):
    res = client.get("/health")
    assert res.headers["X-Content-Type-Options"] == "nosniff"
    assert "checkout.razorpay.com" in res.headers["Content-Security-Policy"]

def test_no_server_side_session_cookie(client, app):
    res = client.get("/health")
    assert "session=" not in res.headers.get("set-cookie", "")
    assert "SessionMiddleware" not in [m.cls.__name__ for m in app.user_middleware]
