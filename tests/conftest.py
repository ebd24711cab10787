from __future__ import annotations

import sys
from pathlib import Path
from typing import Any, Callable, Dict, Optional

import httpx
import pytest

# Ensure local "src/" takes precedence over any globally-installed "instadrop" package.
ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"

src_str = str(SRC)
if src_str not in sys.path:
    sys.path.insert(0, src_str)

SELLER = "ST2SELLER00000000000000000000000000000000"
BUYER = "ST3BUYER000000000000000000000000000000000"
TX_ID = "0x" + "a1" * 32


def stx_transfer(
    *,
    recipient: str = SELLER,
    amount_micro: Any = 5_000_000,
    status: str = "success",
    tx_type: str = "token_transfer",
    tx_id: str = TX_ID,
) -> Dict[str, Any]:
    """A Hiro /extended/v1/tx payload for an STX transfer."""
    return {
        "tx_id": tx_id,
        "tx_type": tx_type,
        "tx_status": status,
        "sender_address": BUYER,
        "fee_rate": "180",
        "token_transfer": {
            "recipient_address": recipient,
            "amount": str(amount_micro) if amount_micro is not None else None,
            "memo": "0x",
        },
    }


class FakeLedger:
    """httpx.MockTransport handler with a programmable answer and a call log."""

    def __init__(self) -> None:
        self.calls: list[httpx.Request] = []
        self.status_code = 200
        self.payload: Optional[Any] = stx_transfer()
        self.raw_body: Optional[bytes] = None
        self.exc: Optional[Exception] = None

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        if self.exc is not None:
            raise self.exc
        if self.raw_body is not None:
            return httpx.Response(self.status_code, content=self.raw_body)
        return httpx.Response(self.status_code, json=self.payload)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


@pytest.fixture
def ledger() -> FakeLedger:
    return FakeLedger()


@pytest.fixture
def app_env(tmp_path, monkeypatch) -> Path:
    """Point every INSTADROP_* path at tmp_path and pin test-friendly defaults."""
    data = tmp_path / "data"
    monkeypatch.setenv("INSTADROP_MODE", "test")
    monkeypatch.setenv("INSTADROP_DATA_DIR", str(data))
    monkeypatch.setenv("INSTADROP_FRONTEND_DIR", str(tmp_path / "no-frontend"))
    for name in (
        "INSTADROP_UPLOADS_DIR",
        "INSTADROP_DB_PATH",
        "INSTADROP_CORS_ORIGINS",
        "INSTADROP_LEDGER_NETWORK",
        "INSTADROP_LEDGER_API_BASE",
        "INSTADROP_LEDGER_API_KEY",
        "INSTADROP_VERIFICATION_FAILURE_POLICY",
        "INSTADROP_ACCEPT_PENDING",
        "INSTADROP_AMOUNT_TOLERANCE",
        "INSTADROP_MIN_REFERENCE_LENGTH",
        "INSTADROP_MAX_UPLOAD_BYTES",
        "INSTADROP_STORE_CORRUPT_POLICY",
        "INSTADROP_CACHE_ENABLED",
    ):
        monkeypatch.delenv(name, raising=False)
    return data


@pytest.fixture
def make_client(app_env, ledger) -> Callable[..., Any]:
    """Build a TestClient over a fresh app; env overrides apply before create_app."""
    from fastapi.testclient import TestClient

    from instadrop.api.app import create_app

    def _make(**env: str):
        mp = pytest.MonkeyPatch()
        for k, v in env.items():
            mp.setenv(k, v)
        try:
            app = create_app(ledger_transport=ledger.transport())
        finally:
            mp.undo()
        return TestClient(app)

    return _make


def upload(client, *, name: str = "notes.txt", content: bytes = b"hello drop\n", mime: str = "text/plain", **fields: str):
    data = {"title": "Notes", "sellerWallet": SELLER, "isFree": "true"}
    data.update(fields)
    return client.post("/api/upload", files={"file": (name, content, mime)}, data=data)
