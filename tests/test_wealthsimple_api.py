"""Tests for the Wealthsimple accounts client."""

import pytest
import requests
from unittest.mock import Mock, MagicMock, patch

from broker.errors import ProtocolError, TransportError, Unauthorized
from broker.wealthsimple_api import WealthsimpleClient, parse_account


def _amount(v, currency="CAD"):
    return {"amount": v, "currency": currency}


def _account(id_="tfsa-abc", type_="ca_tfsa", nickname="Savings", **figures):
    raw = {
        "object": "account",
        "id": id_,
        "type": type_,
        "nickname": nickname,
        "base_currency": "CAD",
        "status": "open",
        "owners": [{"client_id": "person-1", "ownership_type": "primary", "account_nickname": None}],
        "net_liquidation": _amount("1100.00"),
        "gross_position": _amount("1100.00"),
        "total_deposits": _amount("1000.00"),
        "total_withdrawals": _amount("200.00"),
        "withdrawn_earnings": _amount("0.00"),
        "created_at": "2020-01-01T00:00:00.000Z",
        "updated_at": "2020-06-01T00:00:00.000Z",
    }
    raw.update(figures)
    return raw


def _listing(*accounts):
    return {"object": "account", "offset": 0, "total_count": len(accounts), "results": list(accounts)}


@pytest.fixture
def mock_http():
    """Mock requests.Session for WealthsimpleClient."""
    with patch("broker.wealthsimple_api.requests.Session") as mock:
        session_instance = MagicMock()
        mock.return_value = session_instance
        yield session_instance


def _ok(body):
    r = Mock()
    r.status_code = 200
    r.json.return_value = body
    r.text = ""
    return r


def test_list_accounts_parses_results(mock_http):
    """Each result becomes an Account with float figures."""
    mock_http.get.return_value = _ok(_listing(_account(), _account(id_="rrsp-1", type_="ca_rrsp")))
    client = WealthsimpleClient()

    accounts = client.list_accounts("tok")

    assert [a.id for a in accounts] == ["tfsa-abc", "rrsp-1"]
    a = accounts[0]
    assert a.type == "ca_tfsa"
    assert a.nickname == "Savings"
    assert a.total_deposits == 1000.0
    assert a.total_withdrawals == 200.0
    assert a.net_liquidation == 1100.0
    assert a.gross_position == 1100.0
    assert a.base_currency == "CAD"


def test_list_accounts_sends_bearer_token(mock_http):
    """The access token is sent as a bearer Authorization header."""
    mock_http.get.return_value = _ok(_listing())
    client = WealthsimpleClient(base_url="https://example.test/v1")

    client.list_accounts("tok-123")

    url = mock_http.get.call_args[0][0]
    assert url == "https://example.test/v1/accounts"
    assert mock_http.get.call_args.kwargs["headers"]["Authorization"] == "Bearer tok-123"


def test_missing_nickname_is_empty_label():
    """Absent or null nickname becomes an empty string, never a guess."""
    raw = _account(nickname=None)
    assert parse_account(raw).nickname == ""
    del raw["nickname"]
    assert parse_account(raw).nickname == ""


def test_unparseable_amount_is_skipped():
    """A bad amount string yields None for that figure only."""
    acct = parse_account(_account(gross_position=_amount("n/a")))
    assert acct.gross_position is None
    assert acct.net_liquidation == 1100.0


def test_missing_id_is_protocol_error():
    raw = _account()
    del raw["id"]
    with pytest.raises(ProtocolError):
        parse_account(raw)


def test_401_raises_unauthorized(mock_http):
    r = Mock(status_code=401, text="expired")
    mock_http.get.return_value = r
    with pytest.raises(Unauthorized):
        WealthsimpleClient().list_accounts("tok")


def test_other_status_raises_transport_error(mock_http):
    r = Mock(status_code=502, text="bad gateway")
    mock_http.get.return_value = r
    with pytest.raises(TransportError) as exc:
        WealthsimpleClient().list_accounts("tok")
    assert exc.value.status_code == 502


def test_connection_error_raises_transport_error(mock_http):
    mock_http.get.side_effect = requests.Timeout("read timed out")
    with pytest.raises(TransportError):
        WealthsimpleClient().list_accounts("tok")


def test_non_json_body_is_protocol_error(mock_http):
    r = Mock(status_code=200, text="<html>")
    r.json.side_effect = ValueError("no json")
    mock_http.get.return_value = r
    with pytest.raises(ProtocolError):
        WealthsimpleClient().list_accounts("tok")


def test_missing_results_is_protocol_error(mock_http):
    mock_http.get.return_value = _ok({"object": "error"})
    with pytest.raises(ProtocolError):
        WealthsimpleClient().list_accounts("tok")
