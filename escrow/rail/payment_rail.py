"""
Payment rail adapters.

The engine only needs `fund(contract_id, amount, currency, contract_hash="")
-> ledger_tx_id`. Either a tx id comes back or LedgerUnavailable is raised;
there is no partial outcome and no rollback.
"""
import hashlib
import secrets
from decimal import Decimal

import httpx

from escrow.core.errors import LedgerUnavailable
from escrow.observability.logging import log
from escrow.settings import settings


class SimulatedPaymentRail:
    """Mock chain: tx id is 0x + 16 hex of the contract hash + 8 random hex."""

    def fund(self, contract_id: str, amount: Decimal, currency: str, contract_hash: str = "") -> str:
        digest = contract_hash or hashlib.sha256(f"{contract_id}:{amount}:{currency}".encode("utf-8")).hexdigest()
        tx_id = f"0x{digest[:16]}{secrets.token_hex(4)}"
        log(event="rail_simulated_fund", contractId=contract_id, txId=tx_id)
        return tx_id


class HttpPaymentRail:
    def __init__(self, url: str = "", timeout: float = 0.0):
        self.url = url or settings.PAYMENT_RAIL_URL
        self.timeout = float(timeout or settings.PAYMENT_RAIL_TIMEOUT_SEC)

    def fund(self, contract_id: str, amount: Decimal, currency: str, contract_hash: str = "") -> str:
        if not self.url:
            raise LedgerUnavailable("payment rail URL is not configured", contract_id=contract_id)
        body = {
            "contractId": contract_id,
            "amount": str(amount),
            "currency": currency,
            "contractHash": contract_hash,
        }
        headers = {"Idempotency-Key": f"fund:{contract_id}", "Content-Type": "application/json"}
        try:
            with httpx.Client(timeout=self.timeout) as client:
                resp = client.post(self.url, json=body, headers=headers)
        except httpx.HTTPError as e:
            log(event="rail_fund_exception", level="warning", contractId=contract_id,
                errorType=type(e).__name__, error=str(e)[:300])
            raise LedgerUnavailable(f"payment rail unreachable: {type(e).__name__}", contract_id=contract_id)

        if not (200 <= resp.status_code < 300):
            log(event="rail_fund_non2xx", level="warning", contractId=contract_id,
                statusCode=int(resp.status_code), responseText=(resp.text or "")[:300])
            raise LedgerUnavailable(f"payment rail returned {resp.status_code}", contract_id=contract_id)

        try:
            data = resp.json()
        except ValueError:
            data = {}
        tx_id = str((data or {}).get("tx_id") or (data or {}).get("txId") or "").strip()
        if not tx_id:
            raise LedgerUnavailable("payment rail response had no tx id", contract_id=contract_id)
        return tx_id


def build_rail(mode: str = ""):
    mode = (mode or settings.PAYMENT_RAIL_MODE or "simulated").lower()
    if mode == "http":
        return HttpPaymentRail()
    return SimulatedPaymentRail()
