#!/usr/bin/env python3

"""Local smoke test for InstaDrop.

It verifies:
  - the app boots on a fresh data dir and serves /health
  - a free drop uploads, lists, and downloads byte-for-byte
  - a paid drop answers 402 with payment terms, then streams once a
    (mocked) ledger confirms the transfer
  - /api/stats reflects the downloads

The ledger is answered by httpx.MockTransport, so no network is used.

Usage:
  python3 scripts/smoke.py
"""

from __future__ import annotations

import os
import tempfile

import httpx
from fastapi.testclient import TestClient

from instadrop.api.app import create_app

SELLER = "ST1SMOKESELLER0000000000000000000000000"
TX_ID = "0x" + "ab" * 32


def _ledger(request: httpx.Request) -> httpx.Response:
    if request.url.path.endswith(TX_ID):
        return httpx.Response(
            200,
            json={
                "tx_id": TX_ID,
                "tx_type": "token_transfer",
                "tx_status": "success",
                "sender_address": "ST1SMOKEBUYER",
                "token_transfer": {"recipient_address": SELLER, "amount": "2500000"},
            },
        )
    return httpx.Response(404, json={"error": "not found"})


def main() -> int:
    with tempfile.TemporaryDirectory(prefix="instadrop-smoke-") as td:
        os.environ["INSTADROP_MODE"] = "dev"
        os.environ["INSTADROP_DATA_DIR"] = td
        os.environ["INSTADROP_FRONTEND_DIR"] = os.path.join(td, "no-frontend")
        os.environ.pop("INSTADROP_UPLOADS_DIR", None)
        os.environ.pop("INSTADROP_DB_PATH", None)

        app = create_app(ledger_transport=httpx.MockTransport(_ledger))

        with TestClient(app) as c:
            r = c.get("/health")
            assert r.status_code == 200, r.text
            assert bool(r.json().get("ok")) is True

            free_bytes = b"hello from the smoke test\n"
            r = c.post(
                "/api/upload",
                files={"file": ("notes.txt", free_bytes, "text/plain")},
                data={"title": "Notes", "sellerWallet": SELLER, "isFree": "true"},
            )
            assert r.status_code == 200, r.text
            free_id = r.json()["data"]["id"]

            r = c.get(f"/api/download/{free_id}")
            assert r.status_code == 200, r.text
            assert r.content == free_bytes

            r = c.post(
                "/api/upload",
                files={"file": ("pack.zip", b"PK\x03\x04smoke", "application/zip")},
                data={"title": "Pack", "sellerWallet": SELLER, "price": "2.5"},
            )
            assert r.status_code == 200, r.text
            paid_id = r.json()["data"]["id"]

            r = c.get(f"/api/download/{paid_id}")
            assert r.status_code == 402, r.text
            assert r.json()["payment"]["recipient"] == SELLER

            r = c.get(f"/api/download/{paid_id}", headers={"X-Payment-TxId": TX_ID})
            assert r.status_code == 200, r.text

            r = c.get("/api/stats")
            stats = r.json()["data"]
            assert stats["totalFiles"] == 2, stats
            assert stats["totalDownloads"] == 2, stats

        print("OK: upload/list/download + 402 payment flow", stats)
        return 0


if __name__ == "__main__":
    raise SystemExit(main())
