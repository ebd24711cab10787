from __future__ import annotations

import time
from typing import Any, Optional

from fastapi import APIRouter, Request

from instadrop.storage.drop_store import DropStoreError

router = APIRouter()


def _now_ms() -> int:
    return int(time.time() * 1000)


def _try_drop_count(store: Any) -> Optional[int]:
    if store is None:
        return None
    try:
        return len(store.list())
    except DropStoreError:
        return None


def _health_payload(request: Request) -> dict[str, object]:
    # health must never crash; a broken store reports drops=None
    cfg = getattr(request.app.state, "cfg", None)
    store = getattr(request.app.state, "store", None)

    return {
        "ok": True,
        "service": "instadrop",
        "version": "v1",
        "ts_ms": _now_ms(),
        "mode": getattr(cfg, "mode", None),
        "drops": _try_drop_count(store),
        "ledger": {
            "network": getattr(cfg, "ledger_network", None),
            "failure_policy": getattr(cfg, "verification_failure_policy", None),
            "accept_pending": getattr(cfg, "accept_pending", None),
        },
    }


@router.get("/health")
def health(request: Request) -> dict[str, object]:
    return _health_payload(request)


@router.get("/healthz")
def healthz(request: Request) -> dict[str, object]:
    # Kubernetes-style alias
    return _health_payload(request)
