import re
from decimal import Decimal
from unittest.mock import MagicMock, patch

import httpx
import pytest

from escrow.core.errors import LedgerUnavailable
from escrow.rail.payment_rail import HttpPaymentRail, SimulatedPaymentRail, build_rail
from escrow.settings import settings


def _client_returning(resp=None, exc=None):
    client = MagicMock()
    if exc is not None:
        client.post.side_effect = exc
    else:
        client.post.return_value = resp
    ctx = MagicMock()
    ctx.__enter__.return_value = client
    return ctx, client


def _resp(status, body=None, text=""):
    r = MagicMock()
    r.status_code = status
    r.text = text
    if isinstance(body, Exception):
        r.json.side_effect = body
    else:
        r.json.return_value = body
    return r


def test_simulated_tx_id_shape():
    tx = SimulatedPaymentRail().fund("c1", Decimal("5000"), "USD", contract_hash="ab" * 32)
    assert re.fullmatch(r"0x[0-9a-f]{24}", tx)
    assert tx.startswith("0x" + ("ab" * 8))


def test_simulated_tx_ids_are_unique():
    rail = SimulatedPaymentRail()
    assert rail.fund("c1", Decimal("1"), "USD") != rail.fund("c1", Decimal("1"), "USD")


@patch("escrow.rail.payment_rail.httpx.Client")
def test_http_rail_success(mock_client_cls):
    ctx, client = _client_returning(_resp(200, {"tx_id": "0xabc"}))
    mock_client_cls.return_value = ctx
    tx = HttpPaymentRail(url="http://rail.local/fund", timeout=3).fund("c1", Decimal("10.5"), "USD", "h")
    assert tx == "0xabc"
    kwargs = client.post.call_args.kwargs
    assert kwargs["json"] == {"contractId": "c1", "amount": "10.5", "currency": "USD", "contractHash": "h"}
    assert kwargs["headers"]["Idempotency-Key"] == "fund:c1"


@patch("escrow.rail.payment_rail.httpx.Client")
def test_http_rail_non_2xx(mock_client_cls):
    ctx, _ = _client_returning(_resp(502, text="bad gateway"))
    mock_client_cls.return_value = ctx
    with pytest.raises(LedgerUnavailable) as exc:
        HttpPaymentRail(url="http://rail.local/fund", timeout=3).fund("c1", Decimal("1"), "USD")
    assert exc.value.contract_id == "c1"


@patch("escrow.rail.payment_rail.httpx.Client")
def test_http_rail_transport_error(mock_client_cls):
    ctx, _ = _client_returning(exc=httpx.ConnectError("refused"))
    mock_client_cls.return_value = ctx
    with pytest.raises(LedgerUnavailable):
        HttpPaymentRail(url="http://rail.local/fund", timeout=3).fund("c1", Decimal("1"), "USD")


@patch("escrow.rail.payment_rail.httpx.Client")
def test_http_rail_missing_tx_id(mock_client_cls):
    ctx, _ = _client_returning(_resp(200, ValueError("not json")))
    mock_client_cls.return_value = ctx
    with pytest.raises(LedgerUnavailable):
        HttpPaymentRail(url="http://rail.local/fund", timeout=3).fund("c1", Decimal("1"), "USD")


def test_http_rail_without_url():
    with patch.object(settings, "PAYMENT_RAIL_URL", ""), pytest.raises(LedgerUnavailable):
        HttpPaymentRail(url="", timeout=1).fund("c1", Decimal("1"), "USD")


def test_build_rail_modes():
    assert isinstance(build_rail("simulated"), SimulatedPaymentRail)
    assert isinstance(build_rail("http"), HttpPaymentRail)
