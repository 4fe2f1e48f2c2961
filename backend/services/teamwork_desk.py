# services/teamwork_desk.py — Teamwork Desk ticketing connector
"""
Builds the stored connection config for a Teamwork Desk source and talks to
the Desk v2 API to validate credentials and page through tickets.

Stored config shape::

    {"provider": "teamwork_desk", "siteName": "...", "apiKey": "...", "dataType": "tickets"}

``apiKey`` is tagged: ``enc:<sealed>`` when ENCRYPTION_KEY is configured,
``plain:<key>`` otherwise. Untagged values from older rows are read as plaintext.
"""
import os
import logging
from typing import Any, Dict, List, Optional

import httpx

import encryption
from errors import AppError, RecordLimitError, ValidationError

logger = logging.getLogger("foundry.teamwork_desk")

PROVIDER = "teamwork_desk"
MAX_PAGE_SIZE = 50
DEFAULT_MAX_RECORDS = 5000
TEAMWORK_MAX_RECORDS = int(os.getenv("TEAMWORK_MAX_RECORDS", "10000"))
REQUEST_TIMEOUT = 30


def api_base(site_name: str) -> str:
    return f"https://{site_name}.teamwork.com/desk/api/v2"


def store_api_key(api_key: str) -> str:
    if encryption.is_configured():
        return f"enc:{encryption.encrypt(api_key)}"
    if os.getenv("ENVIRONMENT", "development") == "production":
        raise AppError("Credential encryption is not configured", code="SERVER_ENCRYPTION_UNAVAILABLE")
    return f"plain:{api_key}"


def retrieve_api_key(stored: str) -> str:
    if stored.startswith("enc:"):
        return encryption.decrypt(stored[4:])
    if stored.startswith("plain:"):
        return stored[6:]
    return stored


def connection_config(site_name: str, api_key: str, data_type: str = "tickets") -> Dict[str, Any]:
    """Config as submitted, key still raw. The sources service seals it on save."""
    return {
        "provider": PROVIDER,
        "siteName": site_name.strip(),
        "apiKey": api_key.strip(),
        "dataType": data_type,
    }


async def _request(
    site_name: str,
    api_key: str,
    path: str,
    params: Dict[str, Any],
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Dict[str, Any]:
    url = f"{api_base(site_name)}{path}"
    try:
        async with httpx.AsyncClient(timeout=REQUEST_TIMEOUT, transport=transport) as client:
            resp = await client.get(
                url,
                params=params,
                auth=(api_key, ""),
                headers={"Content-Type": "application/json"},
            )
    except httpx.RequestError as e:
        logger.warning(f"Teamwork Desk unreachable site={site_name}: {e}")
        raise ValidationError(f"Could not reach Teamwork Desk: {str(e)[:200]}")

    if resp.status_code == 401:
        raise ValidationError("Invalid Teamwork Desk API key or site name")
    if resp.status_code == 404:
        raise ValidationError("Teamwork Desk site not found. Check your site name.")
    if resp.status_code == 429:
        raise ValidationError("Teamwork Desk API rate limit exceeded. Please try again later.")
    if resp.is_error:
        raise ValidationError(f"Teamwork Desk API error: {resp.status_code} {resp.reason_phrase}")

    return resp.json()


async def test_connection(
    site_name: Optional[str],
    api_key: Optional[str],
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Dict[str, Any]:
    if not site_name or not site_name.strip():
        raise ValidationError("Site name is required")
    if not api_key or not api_key.strip():
        raise ValidationError("API key is required")

    await _request(site_name.strip(), api_key.strip(), "/tickets.json", {"pageSize": 1}, transport)
    return {"success": True, "message": "Successfully connected to Teamwork Desk"}


async def fetch_tickets(
    config: Dict[str, Any],
    page_size: int = MAX_PAGE_SIZE,
    max_records: int = DEFAULT_MAX_RECORDS,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> List[Dict[str, Any]]:
    """Walk ``pageOffset`` until a short page, the reported total or ``max_records``."""
    if max_records > TEAMWORK_MAX_RECORDS:
        raise RecordLimitError(
            f"max_records cannot exceed {TEAMWORK_MAX_RECORDS}",
            {"max_records": max_records, "limit": TEAMWORK_MAX_RECORDS},
        )

    api_key = retrieve_api_key(config["apiKey"])
    page_size = max(1, min(page_size, MAX_PAGE_SIZE))

    tickets: List[Dict[str, Any]] = []
    total = None
    offset = 0
    while True:
        data = await _request(
            config["siteName"], api_key, "/tickets.json",
            {"pageSize": page_size, "pageOffset": offset}, transport,
        )
        page = data.get("tickets") or []
        tickets.extend(page)

        if total is None:
            total = ((data.get("meta") or {}).get("page") or {}).get("count")

        if len(page) < page_size:
            break
        if total is not None and len(tickets) >= total:
            break
        if len(tickets) >= max_records:
            break
        offset += page_size

    logger.info(f"Fetched {len(tickets)} tickets site={config['siteName']}")
    return tickets[:max_records]
