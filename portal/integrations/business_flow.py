"""
Business-flow (main CRM application) REST client.

- Public API (``/api/public/v1``, authenticated with ``X-API-Key``):
  product templates for the order catalogue, calculation creation for
  order requests.
- Quote-response webhook on the main app, used as a backup trigger for
  its e-mail notifications.
"""

import logging

import requests

from portal.core.config import get_key

log = logging.getLogger("portal.business_flow")

TIMEOUT = 15


class UpstreamError(Exception):
    """Non-2xx response from the business-flow API."""

    def __init__(self, status: int, body: str = ""):
        super().__init__(f"business-flow API returned {status}")
        self.status = status
        self.body = body


def _headers() -> dict:
    return {
        "X-API-Key": get_key("business_flow_key"),
        "Content-Type": "application/json",
    }


def _api_url(path: str) -> str:
    return f"{get_key('business_flow_url').rstrip('/')}/api/public/v1/{path}"


def _check(resp, what: str):
    if not resp.ok:
        log.error("%s failed: %s %s", what, resp.status_code, resp.text[:300])
        raise UpstreamError(resp.status_code, resp.text)
    return resp.json()


def list_product_templates(organization_id: str, page: str = "1", page_size: str = "20",
                           search: str = "", category_id: str = "") -> dict:
    """One page of the organization's product templates, passed through unchanged."""
    params = {"organizationId": organization_id, "page": page, "pageSize": page_size}
    if search:
        params["search"] = search
    if category_id:
        params["categoryId"] = category_id
    resp = requests.get(_api_url("product-templates"), params=params,
                        headers=_headers(), timeout=TIMEOUT)
    return _check(resp, "Product templates")


def create_calculation(organization_id: str, payload: dict) -> dict:
    """Create a calculation in the CRM. Returns the created record (with ``id``)."""
    resp = requests.post(_api_url("calculations"), params={"organizationId": organization_id},
                         json=payload, headers=_headers(), timeout=TIMEOUT)
    data = _check(resp, "Create calculation")
    log.info("Upstream calculation created: %s", data.get("id"))
    return data


def notify_quote_response(payload: dict) -> bool:
    """POST the client's quote response to the main app. Failures are logged only."""
    url = f"{get_key('main_app_url').rstrip('/')}/api/webhooks/quote-response"
    try:
        resp = requests.post(url, json=payload, timeout=TIMEOUT)
    except requests.RequestException as e:
        log.error("Quote-response webhook to %s failed: %s", url, e)
        return False
    if not resp.ok:
        log.error("Quote-response webhook returned %s: %s", resp.status_code, resp.text[:200])
        return False
    log.info("Quote-response webhook sent (%s)", payload.get("action"))
    return True
