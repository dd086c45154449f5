"""
Rate limiter buckets, the rate_limit decorator and response headers.
"""
from unittest.mock import patch

from flask import Flask, jsonify
from werkzeug.middleware.proxy_fix import ProxyFix

from portal.core import security
from portal.core.security import RateLimiter, init_security, rate_limit


class TestRateLimiter:

    def test_burst_then_block(self):
        limiter = RateLimiter()
        results = [limiter.check("1.2.3.4:auth", max_tokens=3, refill_rate=0) for _ in range(4)]
        assert results == [True, True, True, False]

    def test_keys_are_independent(self):
        limiter = RateLimiter()
        assert limiter.check("a", max_tokens=1, refill_rate=0)
        assert not limiter.check("a", max_tokens=1, refill_rate=0)
        assert limiter.check("b", max_tokens=1, refill_rate=0)

    def test_reset(self):
        limiter = RateLimiter()
        limiter.check("a", max_tokens=1, refill_rate=0)
        limiter.reset()
        assert limiter.check("a", max_tokens=1, refill_rate=0)

    def test_cleanup_drops_idle_buckets(self):
        limiter = RateLimiter()
        limiter.check("a", max_tokens=1, refill_rate=0)
        limiter.cleanup(max_age=-1)
        assert limiter.check("a", max_tokens=1, refill_rate=0)

    def test_idle_buckets_swept_every_nth_call(self):
        limiter = RateLimiter()
        limiter.CLEANUP_EVERY = 5
        with patch("portal.core.security.time.time", return_value=1000.0):
            for i in range(4):
                limiter.check(f"6.6.6.{i}:auth")
        assert len(limiter) == 4
        with patch("portal.core.security.time.time", return_value=1000.0 + RateLimiter.MAX_IDLE + 1):
            limiter.check("10.0.0.1:auth")
        assert len(limiter) == 1

    def test_recent_buckets_survive_sweep(self):
        limiter = RateLimiter()
        limiter.CLEANUP_EVERY = 3
        limiter.check("a", max_tokens=1, refill_rate=0)
        limiter.check("b", max_tokens=1, refill_rate=0)
        limiter.check("c", max_tokens=1, refill_rate=0)
        assert len(limiter) == 3
        assert not limiter.check("a", max_tokens=1, refill_rate=0)


def _app():
    app = Flask(__name__)

    @app.route("/login", methods=["POST"])
    @rate_limit("auth")
    def login():
        return jsonify({"ok": True})

    init_security(app)
    return app


class TestDecorator:

    def test_auth_tier_blocks_after_five(self, monkeypatch):
        monkeypatch.delenv("DISABLE_RATE_LIMIT")
        with _app().test_client() as c:
            codes = [c.post("/login").status_code for _ in range(6)]
        assert codes[:5] == [200] * 5
        assert codes[5] == 429

    def test_slovak_error_message(self, monkeypatch):
        monkeypatch.delenv("DISABLE_RATE_LIMIT")
        with _app().test_client() as c:
            for _ in range(5):
                c.post("/login")
            resp = c.post("/login")
        assert resp.get_json()["error"].startswith("Príliš veľa požiadaviek")

    def test_retry_after_header(self, monkeypatch):
        monkeypatch.delenv("DISABLE_RATE_LIMIT")
        with _app().test_client() as c:
            for _ in range(5):
                c.post("/login")
            resp = c.post("/login")
        # auth tier regains one attempt every 10 seconds
        assert 1 <= int(resp.headers["Retry-After"]) <= 11

    def test_forged_forwarded_header_does_not_reset_limit(self, monkeypatch):
        monkeypatch.delenv("DISABLE_RATE_LIMIT")
        with _app().test_client() as c:
            for _ in range(5):
                c.post("/login")
            codes = [c.post("/login", headers={"X-Forwarded-For": f"6.6.6.{i}"}).status_code
                     for i in range(20)]
        assert codes == [429] * 20
        assert len(security._limiter) == 1

    def test_proxy_appended_hop_is_the_client(self, monkeypatch):
        monkeypatch.delenv("DISABLE_RATE_LIMIT")
        monkeypatch.setenv("PROXY_HOPS", "1")
        with _app().test_client() as c:
            for i in range(5):
                c.post("/login", headers={"X-Forwarded-For": f"6.6.6.{i}, 10.0.0.1"})
            blocked = c.post("/login", headers={"X-Forwarded-For": "7.7.7.7, 10.0.0.1"})
            other = c.post("/login", headers={"X-Forwarded-For": "6.6.6.1, 10.0.0.2"})
        assert blocked.status_code == 429
        assert other.status_code == 200

    def test_disabled_by_env(self):
        with _app().test_client() as c:
            assert all(c.post("/login").status_code == 200 for _ in range(10))


class TestProxy:

    def test_no_proxy_trusted_locally(self):
        assert not isinstance(_app().wsgi_app, ProxyFix)

    def test_production_trusts_one_proxy(self, monkeypatch):
        monkeypatch.setenv("RAILWAY_ENVIRONMENT", "production")
        app = _app()
        assert isinstance(app.wsgi_app, ProxyFix)
        assert app.wsgi_app.x_for == 1

    def test_invalid_hop_count_trusts_none(self, monkeypatch):
        monkeypatch.setenv("PROXY_HOPS", "two")
        assert not isinstance(_app().wsgi_app, ProxyFix)


class TestHeaders:

    def test_security_headers(self):
        with _app().test_client() as c:
            resp = c.post("/login")
        assert resp.headers["X-Content-Type-Options"] == "nosniff"
        assert resp.headers["X-Frame-Options"] == "SAMEORIGIN"
        assert resp.headers["Cache-Control"] == "no-store"
