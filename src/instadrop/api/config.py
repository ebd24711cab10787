from __future__ import annotations

import os
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Optional, Tuple

FAIL_OPEN = "fail-open"
FAIL_CLOSED = "fail-closed"
VERIFICATION_FAILURE_POLICIES = (FAIL_OPEN, FAIL_CLOSED)

CORRUPT_RESET = "reset"
CORRUPT_FAIL = "fail"
STORE_CORRUPT_POLICIES = (CORRUPT_RESET, CORRUPT_FAIL)

LEDGER_NETWORKS = {
    "testnet": "https://api.testnet.hiro.so",
    "mainnet": "https://api.hiro.so",
}

MODES = ("prod", "dev", "test")

ALLOWED_EXTENSIONS: Tuple[str, ...] = (
    ".pdf", ".zip", ".rar", ".7z",
    ".png", ".jpg", ".jpeg", ".gif", ".svg", ".webp",
    ".mp4", ".mov", ".avi", ".mkv",
    ".mp3", ".wav", ".flac", ".ogg",
    ".doc", ".docx", ".txt", ".md",
    ".html", ".css", ".js", ".ts", ".json", ".xml",
    ".psd", ".ai", ".sketch", ".fig", ".xd",
    ".xlsx", ".csv",
)

CURRENCY = "STX"
MICRO_PER_UNIT = 1_000_000


@dataclass(frozen=True)
class AppConfig:
    mode: str
    data_dir: Path
    uploads_dir: Path
    db_path: Path
    frontend_dir: Optional[Path]
    cors_origins: Tuple[str, ...]

    ledger_network: str
    ledger_api_base: str
    ledger_api_key: Optional[str]
    ledger_timeout_s: float
    verification_failure_policy: str
    accept_pending: bool
    amount_tolerance: Decimal

    min_reference_length: int
    max_upload_bytes: int
    stream_chunk_bytes: int
    allowed_extensions: Tuple[str, ...]

    store_corrupt_policy: str
    cache_enabled: bool


def _truthy(v: str | None) -> bool:
    if v is None:
        return False
    return v.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_bool(name: str, default: bool) -> bool:
    v = os.getenv(name)
    if v is None or not v.strip():
        return bool(default)
    return _truthy(v)


def _env_int(name: str, default: int) -> int:
    try:
        v = str(os.environ.get(name, "") or "").strip()
        return int(v) if v else int(default)
    except ValueError:
        return int(default)


def _env_float(name: str, default: float) -> float:
    try:
        v = str(os.environ.get(name, "") or "").strip()
        return float(v) if v else float(default)
    except ValueError:
        return float(default)


def _env_choice(name: str, default: str, allowed) -> str:
    raw = (os.environ.get(name) or "").strip().lower()
    if not raw:
        return default
    if raw not in allowed:
        raise ValueError(f"{name} must be one of {', '.join(sorted(allowed))}, got {raw!r}")
    return raw


def _env_path(name: str, default: Path) -> Path:
    raw = (os.environ.get(name) or "").strip()
    return Path(raw).expanduser() if raw else default


def _env_tolerance(name: str, default: str) -> Decimal:
    raw = (os.environ.get(name) or "").strip() or default
    try:
        tol = Decimal(raw)
    except InvalidOperation:
        raise ValueError(f"{name} must be a decimal fraction, got {raw!r}")
    if not tol.is_finite() or tol < 0 or tol >= 1:
        raise ValueError(f"{name} must be in [0, 1), got {raw!r}")
    return tol


def _parse_cors_origins(mode: str) -> Tuple[str, ...]:
    """Parse CORS origins.

    Policy:
      - If INSTADROP_CORS_ORIGINS is unset/empty -> CORS disabled
      - Wildcard "*" is rejected in INSTADROP_MODE=prod
    """
    raw = os.environ.get("INSTADROP_CORS_ORIGINS", "").strip()
    if not raw:
        return ()

    origins = [o.strip() for o in raw.split(",") if o.strip()]

    if "*" in origins:
        if mode == "prod":
            raise RuntimeError(
                "Unsafe CORS configuration: wildcard '*' not allowed in production. "
                "Set explicit origins in INSTADROP_CORS_ORIGINS."
            )
        return ("*",)

    return tuple(origins)


def load_app_config() -> AppConfig:
    mode = _env_choice("INSTADROP_MODE", "prod", MODES)

    data_dir = _env_path("INSTADROP_DATA_DIR", Path("data"))
    uploads_dir = _env_path("INSTADROP_UPLOADS_DIR", data_dir / "uploads")
    db_path = _env_path("INSTADROP_DB_PATH", data_dir / "db.json")

    frontend_dir: Optional[Path] = _env_path("INSTADROP_FRONTEND_DIR", Path("dist"))
    if frontend_dir is not None and not frontend_dir.is_dir():
        frontend_dir = None

    network = _env_choice("INSTADROP_LEDGER_NETWORK", "testnet", LEDGER_NETWORKS.keys())
    api_base = (os.environ.get("INSTADROP_LEDGER_API_BASE") or "").strip() or LEDGER_NETWORKS[network]
    api_key = (os.environ.get("INSTADROP_LEDGER_API_KEY") or "").strip() or None

    return AppConfig(
        mode=mode,
        data_dir=data_dir,
        uploads_dir=uploads_dir,
        db_path=db_path,
        frontend_dir=frontend_dir,
        cors_origins=_parse_cors_origins(mode),
        ledger_network=network,
        ledger_api_base=api_base.rstrip("/"),
        ledger_api_key=api_key,
        ledger_timeout_s=max(0.1, _env_float("INSTADROP_LEDGER_TIMEOUT_S", 10.0)),
        verification_failure_policy=_env_choice(
            "INSTADROP_VERIFICATION_FAILURE_POLICY", FAIL_OPEN, VERIFICATION_FAILURE_POLICIES
        ),
        accept_pending=_env_bool("INSTADROP_ACCEPT_PENDING", True),
        amount_tolerance=_env_tolerance("INSTADROP_AMOUNT_TOLERANCE", "0.01"),
        min_reference_length=max(1, _env_int("INSTADROP_MIN_REFERENCE_LENGTH", 10)),
        max_upload_bytes=max(1, _env_int("INSTADROP_MAX_UPLOAD_BYTES", 500 * 1024 * 1024)),
        stream_chunk_bytes=max(1024, _env_int("INSTADROP_STREAM_CHUNK_BYTES", 64 * 1024)),
        allowed_extensions=ALLOWED_EXTENSIONS,
        store_corrupt_policy=_env_choice("INSTADROP_STORE_CORRUPT_POLICY", CORRUPT_RESET, STORE_CORRUPT_POLICIES),
        cache_enabled=_env_bool("INSTADROP_CACHE_ENABLED", True),
    )
