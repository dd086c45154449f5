"""
Request throttling and response headers for the portal.

Login, shared quotes and supplier links are reachable without an account,
so each of those routes is throttled per client address. Limits are kept
in process memory; every gunicorn worker counts on its own.
"""

import os
import time
import logging
import functools
from threading import Lock

from flask import request, jsonify
from werkzeug.middleware.proxy_fix import ProxyFix

from portal.core.config import get_key

log = logging.getLogger("portal.security")

TOO_MANY_REQUESTS = "Príliš veľa požiadaviek. Skúste to o chvíľu."

# tier: (burst, tokens regained per second)
TIERS = {
    "default": (60, 2.0),
    "auth": (5, 0.1),       # login attempts
    "heavy": (10, 0.2),     # PDF rendering
    "public": (20, 0.5),    # share links, supplier forms
}

RESPONSE_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "SAMEORIGIN",
    "Referrer-Policy": "strict-origin-when-cross-origin",
}


# ═══════════════════════════════════════════════════════════════════════════════
# Throttling
# ═══════════════════════════════════════════════════════════════════════════════

class RateLimiter:
    """Token buckets keyed by ``"<address>:<tier>"``."""

    CLEANUP_EVERY = 1000    # wait_time calls between idle-bucket sweeps
    MAX_IDLE = 3600

    def __init__(self):
        self._buckets = {}   # key -> [tokens, last seen]
        self._lock = Lock()
        self._calls = 0

    def wait_time(self, key: str, burst: int, per_second: float) -> float:
        """Take one token. Returns 0 when allowed, else seconds until the next token."""
        now = time.time()
        with self._lock:
            self._calls += 1
            if self._calls >= self.CLEANUP_EVERY:
                self._calls = 0
                self._prune(now - self.MAX_IDLE)
            tokens, seen = self._buckets.get(key, (burst, now))
            tokens = min(burst, tokens + (now - seen) * per_second)
            if tokens >= 1:
                self._buckets[key] = [tokens - 1, now]
                return 0.0
            self._buckets[key] = [tokens, now]
        if per_second <= 0:
            return float("inf")
        return (1 - tokens) / per_second

    def check(self, key: str, max_tokens: int = 60, refill_rate: float = 1.0) -> bool:
        return self.wait_time(key, max_tokens, refill_rate) == 0

    def reset(self):
        with self._lock:
            self._buckets.clear()
            self._calls = 0

    def cleanup(self, max_age: int = MAX_IDLE):
        """Forget buckets not touched for ``max_age`` seconds."""
        with self._lock:
            self._prune(time.time() - max_age)

    def __len__(self):
        return len(self._buckets)

    def _prune(self, cutoff):
        # caller holds the lock
        for key in [k for k, (_, seen) in self._buckets.items() if seen < cutoff]:
            del self._buckets[key]


_limiter = RateLimiter()


def client_address() -> str:
    """Socket peer of the request. Behind the platform proxy ProxyFix sets it
    from the hop the proxy appended, so client-supplied X-Forwarded-For
    entries are never trusted."""
    return request.remote_addr or "unknown"


def rate_limit(tier: str = "default"):
    """Throttle a route. Set DISABLE_RATE_LIMIT=true to switch off (tests, local runs)."""
    burst, per_second = TIERS.get(tier, TIERS["default"])

    def decorator(f):
        @functools.wraps(f)
        def wrapper(*args, **kwargs):
            if os.environ.get("DISABLE_RATE_LIMIT", "").lower() == "true":
                return f(*args, **kwargs)
            address = client_address()
            wait = _limiter.wait_time(f"{address}:{tier}", burst, per_second)
            if wait:
                log.warning("Throttled %s on %s (%s tier)", address, request.path, tier)
                response = jsonify({"error": TOO_MANY_REQUESTS})
                if wait != float("inf"):
                    response.headers["Retry-After"] = str(int(wait) + 1)
                return response, 429
            return f(*args, **kwargs)
        return wrapper
    return decorator


def _proxy_hops() -> int:
    value = get_key("proxy_hops")
    try:
        return max(0, int(value))
    except ValueError:
        log.warning("PROXY_HOPS=%r is not a number, trusting no proxy", value)
        return 0


# ── Headers ─────────────────────────────────────────────────────────────────

def add_security_headers(response):
    for name, value in RESPONSE_HEADERS.items():
        response.headers.setdefault(name, value)
    # routes may set their own caching
    if "Cache-Control" not in response.headers:
        response.headers["Cache-Control"] = "no-store"
    return response


def init_security(app):
    hops = _proxy_hops()
    if hops:
        app.wsgi_app = ProxyFix(app.wsgi_app, x_for=hops)
    app.after_request(add_security_headers)
    log.info("Security middleware ready (%d throttling tiers, %d trusted proxies)", len(TIERS), hops)
