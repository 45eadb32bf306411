from __future__ import annotations
from typing import Any, Dict, List, Optional

import requests
from loguru import logger

from broker.base import Account
from broker.errors import ProtocolError, TransportError, Unauthorized
from broker.wealthsimple_session import API_BASE, DEF_TIMEOUT, USER_AGENT


def _amount(raw: Dict[str, Any], field: str, account_id: str) -> Optional[float]:
    """Parse a {"amount": "123.45", "currency": "CAD"} object; None if unusable."""
    obj = raw.get(field)
    value = obj.get("amount") if isinstance(obj, dict) else obj
    try:
        return float(value)
    except (TypeError, ValueError):
        logger.warning("Account {}: cannot parse {}={!r}, skipping", account_id, field, value)
        return None


def parse_account(raw: Dict[str, Any]) -> Account:
    if not isinstance(raw, dict):
        raise ProtocolError(f"account entry is not an object: {type(raw).__name__}")
    aid = raw.get("id")
    atype = raw.get("type")
    if not aid or not atype:
        raise ProtocolError(f"account entry missing id/type: {sorted(raw)}")
    aid = str(aid)
    return Account(
        id=aid,
        type=str(atype),
        # nickname is often absent upstream; exported as an empty label
        nickname=raw.get("nickname") or "",
        total_deposits=_amount(raw, "total_deposits", aid),
        total_withdrawals=_amount(raw, "total_withdrawals", aid),
        net_liquidation=_amount(raw, "net_liquidation", aid),
        gross_position=_amount(raw, "gross_position", aid),
        base_currency=raw.get("base_currency"),
        status=raw.get("status"),
    )


class WealthsimpleClient:
    """Read-only client for the accounts listing."""

    def __init__(self, base_url: str = API_BASE, timeout: float = DEF_TIMEOUT):
        self.base = base_url if base_url.endswith("/") else base_url + "/"
        self.timeout = timeout
        self.http = requests.Session()
        self.http.headers.update({"Accept": "*/*", "User-Agent": USER_AGENT})

    def list_accounts(self, token: str) -> List[Account]:
        url = self.base + "accounts"
        try:
            r = self.http.get(url, headers={"Authorization": f"Bearer {token}"}, timeout=self.timeout)
        except requests.RequestException as e:
            raise TransportError(f"GET accounts: {e}") from e

        if r.status_code == 401:
            raise Unauthorized(f"accounts request unauthorized: {r.text[:200]}")
        if r.status_code != 200:
            raise TransportError(
                f"accounts request failed ({r.status_code}): {r.text[:200]}",
                status_code=r.status_code,
            )
        try:
            data = r.json()
        except ValueError as e:
            raise ProtocolError(f"accounts response is not JSON: {r.text[:200]}") from e

        results = data.get("results") if isinstance(data, dict) else None
        if not isinstance(results, list):
            raise ProtocolError("accounts response has no 'results' list")
        accounts = [parse_account(a) for a in results]
        logger.debug(
            "Fetched {} accounts (total_count={})", len(accounts), data.get("total_count")
        )
        return accounts
