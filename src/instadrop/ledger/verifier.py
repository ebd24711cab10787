# src/instadrop/ledger/verifier.py
"""
Payment verification against the Stacks ledger (Hiro API).

Read-only: one GET per verification, no retries. An error status from the
ledger is a rejection. Transport failures, timeouts and unreadable bodies are
resolved by the configured failure policy:
  - fail-open: let the download through, flagged `skipped`, logged loudly
  - fail-closed: reject with `unavailable`
"""
from __future__ import annotations

import logging
from decimal import ROUND_FLOOR, Decimal
from typing import Optional, Tuple

import httpx
from pydantic import ValidationError

from instadrop.api.config import FAIL_CLOSED, FAIL_OPEN, MICRO_PER_UNIT, AppConfig
from instadrop.api.structured_logging import log_event, short_ref
from instadrop.ledger.types import TOKEN_TRANSFER, LedgerTransaction, Verdict

logger = logging.getLogger("instadrop.ledger")

CONFIRMED_STATUSES: Tuple[str, ...] = ("success",)
PENDING_STATUS = "pending"


class LedgerUnavailable(Exception):
    """The ledger service could not answer (network, timeout, 5xx, bad body)."""


def to_micro(amount: Decimal) -> int:
    return int((amount * MICRO_PER_UNIT).to_integral_value(rounding=ROUND_FLOOR))


def from_micro(micro: int) -> Decimal:
    return Decimal(int(micro)) / Decimal(MICRO_PER_UNIT)


def _fmt(amount: Decimal) -> str:
    return format(amount.normalize(), "f")


class LedgerVerifier:
    def __init__(
        self,
        *,
        api_base: str,
        timeout_s: float = 10.0,
        failure_policy: str = FAIL_OPEN,
        accept_pending: bool = True,
        amount_tolerance: Decimal = Decimal("0.01"),
        api_key: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        if failure_policy not in (FAIL_OPEN, FAIL_CLOSED):
            raise ValueError(f"unknown verification failure policy: {failure_policy!r}")
        self.api_base = api_base.rstrip("/")
        self.timeout_s = float(timeout_s)
        self.failure_policy = failure_policy
        self.accept_pending = bool(accept_pending)
        self.amount_tolerance = Decimal(amount_tolerance)
        self.api_key = api_key
        self._transport = transport

    @classmethod
    def from_config(cls, cfg: AppConfig, *, transport: Optional[httpx.AsyncBaseTransport] = None) -> "LedgerVerifier":
        return cls(
            api_base=cfg.ledger_api_base,
            timeout_s=cfg.ledger_timeout_s,
            failure_policy=cfg.verification_failure_policy,
            accept_pending=cfg.accept_pending,
            amount_tolerance=cfg.amount_tolerance,
            api_key=cfg.ledger_api_key,
            transport=transport,
        )

    def _headers(self) -> dict:
        h = {"Accept": "application/json"}
        if self.api_key:
            h["x-api-key"] = self.api_key
        return h

    async def fetch_transaction(self, reference: str) -> Optional[LedgerTransaction]:
        """Look up one transaction.

        None means the ledger did not return it (unknown id or an error status).
        Only transport failures and unreadable bodies raise LedgerUnavailable.
        """
        url = f"{self.api_base}/extended/v1/tx/{reference}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout_s, transport=self._transport) as client:
                resp = await client.get(url, headers=self._headers())
        except httpx.TimeoutException as e:
            raise LedgerUnavailable("ledger API timeout") from e
        except httpx.HTTPError as e:
            raise LedgerUnavailable(f"ledger API unreachable: {type(e).__name__}") from e

        if not resp.is_success:
            # Any error status (404, 429, 5xx...) is a rejection, never a skip.
            log_event(
                logger,
                "ledger_error_status",
                level=logging.WARNING,
                tx_ref=short_ref(reference),
                status=resp.status_code,
            )
            return None

        try:
            body = resp.json()
        except ValueError as e:
            raise LedgerUnavailable("ledger API returned a non-JSON body") from e
        if not isinstance(body, dict):
            raise LedgerUnavailable("ledger API returned an unexpected body")

        try:
            return LedgerTransaction.model_validate(body)
        except ValidationError as e:
            raise LedgerUnavailable("ledger API returned an unrecognized transaction shape") from e

    def check(self, tx: LedgerTransaction, expected_recipient: str, expected_amount: Decimal) -> Verdict:
        """Pure checks of a fetched transaction against the drop's terms."""
        if tx.tx_type != TOKEN_TRANSFER:
            return Verdict.reject("Transaction is not an STX transfer")

        status = (tx.tx_status or "").strip()
        allowed = CONFIRMED_STATUSES + ((PENDING_STATUS,) if self.accept_pending else ())
        if status not in allowed:
            return Verdict.reject(f"Transaction status: {status or 'unknown'}", status=status or None)

        transfer = tx.token_transfer
        recipient = (transfer.recipient_address or "").strip() if transfer is not None else ""
        if not recipient or recipient != expected_recipient:
            return Verdict.reject("Payment recipient does not match the seller", status=status)

        got_micro = transfer.amount_micro() if transfer is not None else 0
        expected_micro = to_micro(expected_amount)
        floor_micro = Decimal(expected_micro) * (Decimal(1) - self.amount_tolerance)
        if Decimal(got_micro) < floor_micro:
            return Verdict.reject(
                f"Payment amount too low. Expected {_fmt(expected_amount)} STX, "
                f"got {_fmt(from_micro(got_micro))} STX",
                status=status,
            )

        return Verdict(
            valid=True,
            sender=tx.sender_address,
            recipient=recipient,
            amount=from_micro(got_micro),
            status=status,
        )

    async def verify(self, reference: str, expected_recipient: str, expected_amount: Decimal) -> Verdict:
        try:
            tx = await self.fetch_transaction(reference)
        except LedgerUnavailable as e:
            return self._on_unavailable(reference, str(e))

        if tx is None:
            return Verdict.reject("Transaction not found on blockchain")

        return self.check(tx, expected_recipient, Decimal(expected_amount))

    def _on_unavailable(self, reference: str, why: str) -> Verdict:
        if self.failure_policy == FAIL_OPEN:
            log_event(
                logger,
                "ledger_verification_skipped",
                level=logging.WARNING,
                tx_ref=short_ref(reference),
                policy=self.failure_policy,
                cause=why,
            )
            return Verdict(
                valid=True,
                reason="Could not verify, ledger API unreachable, allowing download",
                unavailable=True,
                skipped=True,
            )

        log_event(
            logger,
            "ledger_unavailable",
            level=logging.ERROR,
            tx_ref=short_ref(reference),
            policy=self.failure_policy,
            cause=why,
        )
        return Verdict.reject(f"Could not verify payment: {why}", unavailable=True)
