from __future__ import annotations

from typing import Any, Dict

from fastapi import Request

from instadrop.api.config import AppConfig
from instadrop.api.errors import ApiError
from instadrop.runtime.gate import DownloadGate
from instadrop.storage.artifacts import ArtifactStorage

Json = Dict[str, Any]


def _cfg(request: Request) -> AppConfig:
    cfg = getattr(request.app.state, "cfg", None)
    if cfg is None:
        raise ApiError.internal("not_ready", "config not attached to app.state", {})
    return cfg


def _store(request: Request):
    """Drop store attached at startup (cached or plain JsonDropStore)."""
    store = getattr(request.app.state, "store", None)
    if store is None:
        raise ApiError.internal("not_ready", "drop store not attached to app.state", {})
    return store


def _artifacts(request: Request) -> ArtifactStorage:
    artifacts = getattr(request.app.state, "artifacts", None)
    if artifacts is None:
        raise ApiError.internal("not_ready", "artifact storage not attached to app.state", {})
    return artifacts


def _gate(request: Request) -> DownloadGate:
    gate = getattr(request.app.state, "gate", None)
    if gate is None:
        raise ApiError.internal("not_ready", "download gate not attached to app.state", {})
    return gate


def _form_str(v: Any, default: str = "") -> str:
    """Normalize an optional multipart text field."""
    if v is None:
        return str(default)
    return str(v).strip()


def _ok(data: Any) -> Json:
    return {"ok": True, "data": data}
