"""Credit ledger gateway and scoped reservations.

The balance service owns the arithmetic; this module only calls its
``debit_credits`` / ``credit_credits`` RPCs and guarantees that every
successful debit ends up either settled or refunded exactly once.

Usage::

    async with ledger.reservation(user_id, amount) as credits:
        ...                 # any exception here refunds
        credits.settle()    # keep the debit
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from photoglow.models.generation_job import CreditState
from photoglow.services.errors import GenerationError, InsufficientCredits

logger = logging.getLogger(__name__)

_INSUFFICIENT_MARKERS = ("insufficient_credits", "no_credits_row")


class LedgerError(GenerationError):
    """The balance service failed for a reason other than balance."""
    status_code = 502
    default_code = "credits_unavailable"


class CreditLedger:
    """PostgREST client for the credit RPCs."""

    def __init__(
        self,
        base_url: str,
        service_key: str,
        http_client: httpx.AsyncClient,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.service_key = service_key
        self._http = http_client

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.service_key}",
            "apikey": self.service_key,
            "Content-Type": "application/json",
        }

    async def _rpc(self, name: str, user_id: str, amount: int) -> None:
        url = f"{self.base_url}/rest/v1/rpc/{name}"
        try:
            resp = await self._http.post(
                url,
                json={"p_user_id": user_id, "p_amount": int(amount)},
                headers=self._headers(),
            )
        except httpx.HTTPError as e:
            raise LedgerError(details=str(e)) from e

        if resp.status_code < 400:
            return
        message = resp.text[:300]
        if any(marker in message for marker in _INSUFFICIENT_MARKERS):
            raise InsufficientCredits()
        raise LedgerError(details=f"{name} {resp.status_code}: {message}")

    async def reserve(self, user_id: str, amount: int) -> None:
        await self._rpc("debit_credits", user_id, amount)

    async def refund(self, user_id: str, amount: int) -> None:
        await self._rpc("credit_credits", user_id, amount)

    async def balance(self, user_id: str) -> int:
        """Current credits for ``user_id``; 0 when the row does not exist."""
        url = f"{self.base_url}/rest/v1/user_credits"
        try:
            resp = await self._http.get(
                url,
                params={"user_id": f"eq.{user_id}", "select": "credits"},
                headers=self._headers(),
            )
        except httpx.HTTPError as e:
            raise LedgerError(details=str(e)) from e
        if resp.status_code >= 400:
            raise LedgerError(details=f"balance {resp.status_code}: {resp.text[:200]}")

        rows: Any = resp.json()
        if isinstance(rows, list) and rows:
            return int(rows[0].get("credits") or 0)
        return 0

    def reservation(self, user_id: str, amount: int) -> CreditReservation:
        return CreditReservation(self, user_id, amount)


class CreditReservation:
    """One tentative debit, resolved to settled or refunded on scope exit.

    Entering the scope debits.  An insufficient balance propagates as
    ``InsufficientCredits``; any other ledger failure is logged and the
    reservation continues as ``unreserved`` (nothing to refund later).
    """

    def __init__(self, ledger: CreditLedger, user_id: str, amount: int) -> None:
        self.ledger = ledger
        self.user_id = user_id
        self.amount = amount
        self.state = CreditState.PENDING.value
        self.refund_attempts = 0

    @property
    def debited(self) -> bool:
        return self.state in (CreditState.RESERVED.value, CreditState.SETTLED.value)

    async def __aenter__(self) -> CreditReservation:
        if self.amount <= 0:
            self.state = CreditState.UNRESERVED.value
            return self
        try:
            await self.ledger.reserve(self.user_id, self.amount)
        except LedgerError as e:
            logger.warning(
                "Credit reservation failed for user %s, continuing unreserved: %s",
                self.user_id, e,
            )
            self.state = CreditState.UNRESERVED.value
            return self
        self.state = CreditState.RESERVED.value
        logger.debug("Reserved %d credit(s) for user %s", self.amount, self.user_id)
        return self

    def settle(self) -> None:
        if self.state == CreditState.RESERVED.value:
            self.state = CreditState.SETTLED.value

    async def refund(self, reason: str = "") -> None:
        """Return the debit to the caller.  No-op unless still reserved."""
        if self.state != CreditState.RESERVED.value:
            return
        self.refund_attempts += 1
        # Marked first so that a failing RPC is never retried from here.
        self.state = CreditState.REFUNDED.value
        try:
            await self.ledger.refund(self.user_id, self.amount)
        except GenerationError:
            logger.error(
                "Refund of %d credit(s) for user %s failed (%s)",
                self.amount, self.user_id, reason or "unspecified", exc_info=True,
            )
            return
        logger.info("Refunded %d credit(s) to user %s (%s)", self.amount, self.user_id, reason or "unspecified")

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        if exc is not None:
            code = getattr(exc, "code", exc_type.__name__)
            await self.refund(str(code))
        elif self.state == CreditState.RESERVED.value:
            logger.warning(
                "Reservation for user %s left scope without settle(); refunding",
                self.user_id,
            )
            await self.refund("not_settled")
        return False
