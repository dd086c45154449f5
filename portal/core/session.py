"""
Client session cookie.

The session is base64-encoded JSON in the ``client_session`` cookie:
customerId, customerEntityId, customerName, email, organizationId and
expiresAt (epoch milliseconds, 24 hours after login). It is not signed;
the portal only exposes data the customer could already see in their quote
emails.
"""

import json
import time
import base64
import binascii
import logging
from urllib.parse import quote, unquote

from flask import request

log = logging.getLogger("portal.session")

SESSION_COOKIE_NAME = "client_session"
SESSION_TTL_SECONDS = 24 * 60 * 60


def create_session_token(session: dict) -> str:
    data = dict(session)
    data["expiresAt"] = int(time.time() * 1000) + SESSION_TTL_SECONDS * 1000
    return base64.b64encode(json.dumps(data, ensure_ascii=False).encode("utf-8")).decode("ascii")


def parse_session_token(token: str):
    """Decoded session dict, or None when malformed or expired."""
    try:
        session = json.loads(base64.b64decode(token).decode("utf-8"))
    except (ValueError, binascii.Error, UnicodeDecodeError, TypeError):
        return None
    if not isinstance(session, dict):
        return None
    expires_at = session.get("expiresAt")
    if not isinstance(expires_at, (int, float)) or expires_at < time.time() * 1000:
        return None
    return session


def get_session_from_cookie(cookie_header):
    """Session from a raw ``Cookie`` header value."""
    if not cookie_header:
        return None
    cookies = {}
    for part in cookie_header.split(";"):
        key, _, value = part.strip().partition("=")
        cookies[key] = value
    token = cookies.get(SESSION_COOKIE_NAME)
    if not token:
        return None
    return parse_session_token(unquote(token))


def session_from_request():
    return get_session_from_cookie(request.headers.get("Cookie"))


def set_session_cookie(response, session: dict):
    token = create_session_token(session)
    response.set_cookie(
        SESSION_COOKIE_NAME, quote(token, safe=""),
        path="/", httponly=True, samesite="Strict", max_age=SESSION_TTL_SECONDS,
    )
    return response


def clear_session_cookie(response):
    response.set_cookie(
        SESSION_COOKIE_NAME, "",
        path="/", httponly=True, samesite="Strict", max_age=0,
    )
    return response
