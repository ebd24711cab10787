# src/instadrop/ledger/types.py
"""Upstream transaction shape (Hiro Stacks API) and the verifier's verdict.

Only the fields the verifier reads are modelled; everything is optional so a
sparse or evolving upstream payload turns into a rejection, never a crash.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Optional, Union

from pydantic import BaseModel, Field

TOKEN_TRANSFER = "token_transfer"


class TokenTransfer(BaseModel):
    recipient_address: Optional[str] = Field(default=None, description="Receiving account")
    amount: Optional[Union[str, int]] = Field(default=None, description="Amount in microSTX")
    memo: Optional[str] = None

    model_config = {"extra": "allow"}

    def amount_micro(self) -> int:
        try:
            return max(0, int(str(self.amount or "0").strip()))
        except ValueError:
            return 0


class LedgerTransaction(BaseModel):
    tx_id: Optional[str] = None
    tx_type: Optional[str] = None
    tx_status: Optional[str] = None
    sender_address: Optional[str] = None
    token_transfer: Optional[TokenTransfer] = None

    model_config = {"extra": "allow"}


@dataclass(frozen=True)
class Verdict:
    valid: bool
    reason: str = ""
    sender: Optional[str] = None
    recipient: Optional[str] = None
    amount: Optional[Decimal] = None
    status: Optional[str] = None
    # Ledger could not be consulted at all.
    unavailable: bool = False
    # Let through by the fail-open policy without a real check.
    skipped: bool = False

    @staticmethod
    def reject(reason: str, **kw: Any) -> "Verdict":
        return Verdict(valid=False, reason=reason, **kw)
