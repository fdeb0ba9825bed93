"""HTTP client for the custody wallet service.

``POST /transfers`` sends tokens from the treasury; ``GET /balances/{account}``
reads a balance. Transfer failures are classified for the executor's retry
policy: connection errors, timeouts, 429 and 5xx are transient; any other 4xx
or a success body without the expected field is permanent. Any failed balance
read is ``BalanceUnavailable``.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any

import requests

from reward_node.errors import (
    BalanceUnavailable,
    PermanentTransferError,
    TransferError,
    TransientTransferError,
)
from reward_node.services.interfaces.wallet import BalanceProvider, TransferProvider

logger = logging.getLogger(__name__)


@dataclass
class WalletServiceClient(TransferProvider, BalanceProvider):
    base_url: str
    token: str = ""
    timeout_seconds: float = 30.0

    def transfer(self, recipient_address: str, amount: Decimal, *, reference: str | None = None) -> str:
        payload: dict[str, Any] = {"recipient": recipient_address, "amount": format(amount, "f")}
        if reference:
            payload["reference"] = reference

        body = self._request("POST", "/transfers", json=payload)
        tx_reference = body.get("tx_reference") if isinstance(body, dict) else None
        if not tx_reference:
            raise PermanentTransferError(f"wallet response without tx_reference: {body!r}")
        return str(tx_reference)

    def get_balance(self, account: str) -> Decimal:
        try:
            body = self._request("GET", f"/balances/{account}")
        except TransferError as exc:
            raise BalanceUnavailable(account, str(exc)) from exc

        raw = body.get("balance") if isinstance(body, dict) else None
        try:
            balance = Decimal(str(raw))
        except (InvalidOperation, ValueError) as exc:
            raise BalanceUnavailable(account, f"malformed balance {body!r}") from exc
        if not balance.is_finite():
            raise BalanceUnavailable(account, f"malformed balance {body!r}")
        return balance

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        url = f"{self.base_url.rstrip('/')}{path}"
        try:
            response = requests.request(
                method, url, headers=self._headers(), timeout=self.timeout_seconds, **kwargs,
            )
        except (requests.ConnectionError, requests.Timeout) as exc:
            raise TransientTransferError(f"{method} {path}: {exc}") from exc
        except requests.RequestException as exc:
            raise PermanentTransferError(f"{method} {path}: {exc}") from exc

        status = response.status_code
        if status == 429 or status >= 500:
            raise TransientTransferError(f"{method} {path}: HTTP {status}")
        if status >= 400:
            raise PermanentTransferError(f"{method} {path}: HTTP {status} {response.text[:200]}")

        try:
            return response.json()
        except ValueError as exc:
            raise PermanentTransferError(f"{method} {path}: response is not JSON") from exc
