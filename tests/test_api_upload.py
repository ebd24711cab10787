from __future__ import annotations

import json

import pytest

from conftest import SELLER, upload


def _db(app_env):
    return json.loads((app_env / "db.json").read_text(encoding="utf-8"))


def test_upload_free_drop(make_client, app_env):
    c = make_client()
    r = upload(c, name="readme.md", content=b"# hi\n", mime="text/markdown", description="d", category="docs")

    assert r.status_code == 200, r.text
    body = r.json()
    assert body["ok"] is True
    d = body["data"]
    assert d["title"] == "Notes"
    assert d["isFree"] is True
    assert d["price"] == 0
    assert d["sellerWallet"] == SELLER
    assert d["originalName"] == "readme.md"
    assert d["size"] == 5
    assert d["mimetype"] == "text/markdown"
    assert d["description"] == "d"
    assert d["category"] == "docs"
    assert d["downloads"] == 0
    assert d["timestamp"].endswith("Z")

    assert (app_env / "uploads" / d["filename"]).read_bytes() == b"# hi\n"
    assert _db(app_env)[0]["id"] == d["id"]


def test_upload_paid_drop(make_client):
    c = make_client()
    r = upload(c, name="pack.zip", content=b"PK..", mime="application/zip", price="2.5", isFree="false")
    d = r.json()["data"]
    assert d["price"] == 2.5
    assert d["isFree"] is False


def test_zero_price_means_free(make_client):
    c = make_client()
    d = upload(c, price="0", isFree="false").json()["data"]
    assert d["isFree"] is True
    assert d["price"] == 0


def test_free_flag_zeroes_price(make_client):
    c = make_client()
    d = upload(c, price="9", isFree="true").json()["data"]
    assert d["price"] == 0


def test_title_defaults_to_file_name(make_client):
    c = make_client()
    d = upload(c, name="song.mp3", mime="audio/mpeg", title="").json()["data"]
    assert d["title"] == "song.mp3"


def test_ids_are_unique(make_client):
    c = make_client()
    ids = {upload(c).json()["data"]["id"] for _ in range(5)}
    assert len(ids) == 5


def test_disallowed_extension(make_client, app_env):
    c = make_client()
    r = upload(c, name="run.exe", mime="application/octet-stream")
    assert r.status_code == 400
    assert r.json()["error"]["code"] == "file_type_not_allowed"
    assert _db(app_env) == []


def test_missing_wallet(make_client, app_env):
    c = make_client()
    r = upload(c, sellerWallet="  ")
    assert r.status_code == 400
    assert r.json()["error"]["code"] == "seller_wallet_required"
    assert list((app_env / "uploads").iterdir()) == []


@pytest.mark.parametrize("price", ["", "-1", "abc", "NaN", "inf"])
def test_invalid_price(make_client, price):
    c = make_client()
    r = upload(c, price=price, isFree="false")
    assert r.status_code == 400
    assert r.json()["error"]["code"] == "invalid_price"


def test_no_file(make_client):
    c = make_client()
    r = c.post("/api/upload", data={"title": "x", "sellerWallet": SELLER, "isFree": "true"})
    assert r.status_code == 400
    assert r.json()["error"]["code"] == "no_file"


def test_too_large_upload_rejected_and_cleaned_up(make_client, app_env):
    c = make_client(INSTADROP_MAX_UPLOAD_BYTES="1024")
    r = upload(c, content=b"z" * 2048)

    assert r.status_code == 400
    assert r.json()["error"]["code"] == "file_too_large"
    assert list((app_env / "uploads").iterdir()) == []
    assert _db(app_env) == []
