from __future__ import annotations

import httpx
import pytest

from conftest import SELLER, TX_ID, stx_transfer, upload

PAYLOAD = b"\x00binary payload\xff" * 1000


def _paid(c, price: str = "5", name: str = "pack.zip"):
    r = upload(c, name=name, content=PAYLOAD, mime="application/zip", price=price, isFree="false")
    assert r.status_code == 200, r.text
    return r.json()["data"]


def _downloads(c, drop_id: str) -> int:
    return c.get(f"/api/files/{drop_id}").json()["data"]["downloads"]


def test_free_download_streams_bytes_and_counts(make_client, ledger):
    c = make_client()
    d = upload(c, name="notes.txt", content=b"free bytes").json()["data"]

    r = c.get(f"/api/download/{d['id']}")

    assert r.status_code == 200
    assert r.content == b"free bytes"
    assert r.headers["content-type"].startswith("text/plain")
    assert r.headers["content-length"] == str(len(b"free bytes"))
    assert r.headers["content-disposition"] == 'attachment; filename="notes.txt"'
    assert "x-payment-verification" not in r.headers
    assert ledger.calls == []
    assert _downloads(c, d["id"]) == 1


def test_paid_without_reference_is_402(make_client, ledger):
    c = make_client()
    d = _paid(c)

    r = c.get(f"/api/download/{d['id']}")

    assert r.status_code == 402
    assert r.json() == {
        "ok": False,
        "error": {"code": "payment_required", "message": "Payment Required"},
        "payment": {
            "price": 5,
            "currency": "STX",
            "recipient": SELLER,
            "fileId": d["id"],
            "protocol": "x402",
        },
    }
    assert ledger.calls == []
    assert _downloads(c, d["id"]) == 0


def test_paid_with_query_reference(make_client, ledger):
    c = make_client()
    d = _paid(c)

    r = c.get(f"/api/download/{d['id']}", params={"txId": TX_ID})

    assert r.status_code == 200
    assert r.content == PAYLOAD
    assert r.headers["content-disposition"] == 'attachment; filename="pack.zip"'
    assert r.headers["x-payment-verification"] == "verified"
    assert len(ledger.calls) == 1
    assert ledger.calls[0].url.path.endswith(f"/extended/v1/tx/{TX_ID}")
    assert _downloads(c, d["id"]) == 1


def test_paid_with_header_reference(make_client, ledger):
    c = make_client()
    d = _paid(c)
    r = c.get(f"/api/download/{d['id']}", headers={"X-Payment-TxId": TX_ID})
    assert r.status_code == 200
    assert r.content == PAYLOAD


def test_query_reference_wins_over_header(make_client, ledger):
    c = make_client()
    d = _paid(c)
    c.get(f"/api/download/{d['id']}", params={"txId": TX_ID}, headers={"X-Payment-TxId": "0x" + "ff" * 32})
    assert ledger.calls[0].url.path.endswith(TX_ID)


def test_reference_is_reusable(make_client, ledger):
    c = make_client()
    d = _paid(c)
    for _ in range(3):
        assert c.get(f"/api/download/{d['id']}", params={"txId": TX_ID}).status_code == 200
    assert _downloads(c, d["id"]) == 3


def test_rejected_payment_is_403(make_client, ledger):
    c = make_client()
    d = _paid(c, price="10")
    ledger.payload = stx_transfer(amount_micro=5_000_000)

    r = c.get(f"/api/download/{d['id']}", params={"txId": TX_ID})

    assert r.status_code == 403
    err = r.json()["error"]
    assert err["code"] == "verification_failed"
    assert err["message"] == "Payment verification failed: Payment amount too low. Expected 10 STX, got 5 STX"
    assert _downloads(c, d["id"]) == 0


def test_unknown_transaction_is_403(make_client, ledger):
    c = make_client()
    d = _paid(c)
    ledger.status_code = 404
    ledger.payload = {"error": "not found"}

    r = c.get(f"/api/download/{d['id']}", params={"txId": TX_ID})
    assert r.status_code == 403
    assert r.json()["error"]["message"].endswith("Transaction not found on blockchain")


@pytest.mark.parametrize("status_code", [429, 403, 401, 503])
def test_ledger_error_status_never_unlocks(make_client, ledger, status_code):
    c = make_client()
    d = _paid(c)
    ledger.status_code = status_code
    ledger.payload = {"error": "rate limited"}

    r = c.get(f"/api/download/{d['id']}", params={"txId": "0x" + "de" * 32})

    assert r.status_code == 403
    assert r.json()["error"]["code"] == "verification_failed"
    assert r.content != PAYLOAD
    assert _downloads(c, d["id"]) == 0


def test_malformed_reference_is_400(make_client, ledger):
    c = make_client()
    d = _paid(c)
    r = c.get(f"/api/download/{d['id']}", params={"txId": "abc"})
    assert r.status_code == 400
    assert r.json()["error"] == {"code": "invalid_reference", "message": "Invalid transaction ID format"}
    assert ledger.calls == []


def test_outage_fail_open_serves_and_flags(make_client, ledger):
    c = make_client()
    d = _paid(c)
    ledger.exc = httpx.ConnectError("refused")

    r = c.get(f"/api/download/{d['id']}", params={"txId": TX_ID})
    assert r.status_code == 200
    assert r.content == PAYLOAD
    assert r.headers["x-payment-verification"] == "skipped"


def test_outage_fail_closed_is_503(make_client, ledger):
    c = make_client(INSTADROP_VERIFICATION_FAILURE_POLICY="fail-closed")
    d = _paid(c)
    ledger.exc = httpx.ReadTimeout("slow")

    r = c.get(f"/api/download/{d['id']}", params={"txId": TX_ID})
    assert r.status_code == 503
    assert r.json()["error"]["code"] == "ledger_unavailable"
    assert _downloads(c, d["id"]) == 0


def test_pending_rejected_when_disabled(make_client, ledger):
    c = make_client(INSTADROP_ACCEPT_PENDING="0")
    d = _paid(c)
    ledger.payload = stx_transfer(status="pending")

    r = c.get(f"/api/download/{d['id']}", params={"txId": TX_ID})
    assert r.status_code == 403
    assert r.json()["error"]["message"] == "Payment verification failed: Transaction status: pending"


def test_unknown_drop_is_404(make_client):
    c = make_client()
    r = c.get("/api/download/ghost", params={"txId": TX_ID})
    assert r.status_code == 404
    assert r.json()["error"]["message"] == "File not found"


def test_missing_artifact_is_404(make_client, app_env):
    c = make_client()
    d = upload(c).json()["data"]
    (app_env / "uploads" / d["filename"]).unlink()

    r = c.get(f"/api/download/{d['id']}")
    assert r.status_code == 404
    assert r.json()["error"] == {"code": "artifact_missing", "message": "File not found on disk"}
    assert _downloads(c, d["id"]) == 0


@pytest.mark.parametrize("cache", ["1", "0"])
def test_counter_and_stats_agree(make_client, ledger, cache):
    c = make_client(INSTADROP_CACHE_ENABLED=cache)
    free = upload(c).json()["data"]
    paid = _paid(c)

    c.get(f"/api/download/{free['id']}")
    c.get(f"/api/download/{free['id']}")
    c.get(f"/api/download/{paid['id']}")  # 402, not counted
    c.get(f"/api/download/{paid['id']}", params={"txId": TX_ID})

    assert _downloads(c, free["id"]) == 2
    assert _downloads(c, paid["id"]) == 1
    assert c.get("/api/stats").json()["data"]["totalDownloads"] == 3
