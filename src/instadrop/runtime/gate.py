# src/instadrop/runtime/gate.py
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Optional

from starlette.concurrency import run_in_threadpool

from instadrop.api.config import CURRENCY, AppConfig
from instadrop.api.errors import ApiError, PaymentRequired
from instadrop.api.structured_logging import log_event, short_ref
from instadrop.ledger.types import Verdict
from instadrop.ledger.verifier import LedgerVerifier
from instadrop.storage.artifacts import ArtifactStorage
from instadrop.storage.records import Drop, decimal_to_json

logger = logging.getLogger("instadrop.gate")

MAX_REFERENCE_LENGTH = 256
_REFERENCE_RE = re.compile(r"^[A-Za-z0-9_-]+$")


@dataclass(frozen=True)
class Authorization:
    """A drop cleared for transfer. `drop.downloads` already includes this one."""

    drop: Drop
    reference: Optional[str] = None
    verdict: Optional[Verdict] = None


class DownloadGate:
    """Decides whether a download may proceed.

    Idle -> (free | payment-required) -> PaymentPending -> (Verified | Rejected) -> Served

    Outcomes other than authorization are raised:
      - ApiError 404 not_found / artifact_missing
      - PaymentRequired (402) when a paid drop is requested without a reference
      - ApiError 400 invalid_reference
      - ApiError 403 verification_failed
      - ApiError 503 ledger_unavailable (fail-closed outage)

    A verified reference is not consumed; it keeps unlocking the same drop.
    The counter is bumped before streaming, so aborted transfers still count.
    """

    def __init__(
        self,
        *,
        store: Any,
        artifacts: ArtifactStorage,
        verifier: LedgerVerifier,
        min_reference_length: int = 10,
        currency: str = CURRENCY,
    ) -> None:
        self.store = store
        self.artifacts = artifacts
        self.verifier = verifier
        self.min_reference_length = int(min_reference_length)
        self.currency = currency

    @classmethod
    def from_config(cls, cfg: AppConfig, *, store: Any, artifacts: ArtifactStorage, verifier: LedgerVerifier) -> "DownloadGate":
        return cls(
            store=store,
            artifacts=artifacts,
            verifier=verifier,
            min_reference_length=cfg.min_reference_length,
        )

    def validate_reference(self, reference: str) -> str:
        ref = reference.strip()
        if (
            len(ref) < self.min_reference_length
            or len(ref) > MAX_REFERENCE_LENGTH
            or not _REFERENCE_RE.match(ref)
        ):
            raise ApiError.bad_request("invalid_reference", "Invalid transaction ID format")
        return ref

    async def _verify_payment(self, drop: Drop, reference: Optional[str]) -> tuple[str, Verdict]:
        if reference is None or not reference.strip():
            log_event(logger, "payment_required", drop_id=drop.id, price=decimal_to_json(drop.price))
            raise PaymentRequired(
                price=decimal_to_json(drop.price),
                currency=self.currency,
                recipient=drop.seller_wallet,
                file_id=drop.id,
            )

        ref = self.validate_reference(reference)

        log_event(logger, "payment_verifying", drop_id=drop.id, tx_ref=short_ref(ref))
        verdict = await self.verifier.verify(ref, drop.seller_wallet, drop.price)

        if not verdict.valid:
            log_event(
                logger,
                "payment_rejected",
                level=logging.WARNING,
                drop_id=drop.id,
                tx_ref=short_ref(ref),
                reason=verdict.reason,
            )
            if verdict.unavailable:
                raise ApiError.unavailable(
                    "ledger_unavailable",
                    "Payment could not be verified right now, try again later",
                )
            raise ApiError.forbidden("verification_failed", f"Payment verification failed: {verdict.reason}")

        log_event(
            logger,
            "payment_verified",
            drop_id=drop.id,
            tx_ref=short_ref(ref),
            skipped=verdict.skipped,
            sender=verdict.sender,
        )
        return ref, verdict

    async def authorize(self, drop_id: str, reference: Optional[str] = None) -> Authorization:
        drop: Optional[Drop] = await run_in_threadpool(self.store.get, drop_id)
        if drop is None:
            raise ApiError.not_found("not_found", "File not found")

        ref: Optional[str] = None
        verdict: Optional[Verdict] = None
        if drop.requires_payment:
            ref, verdict = await self._verify_payment(drop, reference)

        if not await run_in_threadpool(self.artifacts.exists, drop.storage_key):
            log_event(logger, "artifact_missing", level=logging.ERROR, drop_id=drop.id)
            raise ApiError.not_found("artifact_missing", "File not found on disk")

        updated: Optional[Drop] = await run_in_threadpool(self.store.increment_downloads, drop.id)
        if updated is None:
            # Record vanished between lookup and increment.
            raise ApiError.not_found("not_found", "File not found")

        log_event(logger, "download_authorized", drop_id=drop.id, downloads=updated.downloads, paid=drop.requires_payment)
        return Authorization(drop=updated, reference=ref, verdict=verdict)
