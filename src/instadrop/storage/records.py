# src/instadrop/storage/records.py
from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Dict

Json = Dict[str, Any]


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_timestamp(raw: Any) -> datetime:
    """Parse an ISO-8601 timestamp; unparseable values sort as the epoch."""
    s = str(raw or "").strip()
    if not s:
        return datetime.fromtimestamp(0, tz=timezone.utc)
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(s)
    except ValueError:
        return datetime.fromtimestamp(0, tz=timezone.utc)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def to_decimal(raw: Any, default: Decimal = Decimal(0)) -> Decimal:
    if raw is None or isinstance(raw, bool):
        return default
    try:
        d = Decimal(str(raw).strip())
    except InvalidOperation:
        return default
    return d if d.is_finite() else default


def decimal_to_json(d: Decimal) -> int | float:
    """STX amounts go over the wire as plain JSON numbers."""
    if d == d.to_integral_value():
        return int(d)
    return float(d)


def _safe_int(v: Any, default: int = 0) -> int:
    try:
        if v is None or isinstance(v, bool):
            return int(default)
        return int(v)
    except (TypeError, ValueError):
        return int(default)


@dataclass(frozen=True)
class Drop:
    """A sellable artifact plus its listing metadata.

    Persisted with the camelCase keys of the legacy `db.json` layout, so an
    existing data file loads without migration.
    """

    id: str
    title: str
    price: Decimal
    is_free: bool
    seller_wallet: str
    storage_key: str
    original_name: str
    size: int
    mime_type: str
    description: str = ""
    category: str = ""
    downloads: int = 0
    created_at: str = ""

    @property
    def requires_payment(self) -> bool:
        return not self.is_free and self.price > 0

    @property
    def created_at_dt(self) -> datetime:
        return parse_timestamp(self.created_at)

    def with_downloads(self, downloads: int) -> "Drop":
        return replace(self, downloads=max(0, int(downloads)))

    def to_dict(self) -> Json:
        return {
            "id": self.id,
            "title": self.title,
            "price": decimal_to_json(self.price),
            "isFree": self.is_free,
            "sellerWallet": self.seller_wallet,
            "filename": self.storage_key,
            "originalName": self.original_name,
            "size": self.size,
            "mimetype": self.mime_type,
            "description": self.description,
            "category": self.category,
            "downloads": self.downloads,
            "timestamp": self.created_at,
        }

    @staticmethod
    def from_dict(d: Json) -> "Drop":
        if not isinstance(d, dict):
            raise ValueError("drop record must be a JSON object")
        drop_id = str(d.get("id") or "").strip()
        if not drop_id:
            raise ValueError("drop record is missing an id")

        original_name = str(d.get("originalName") or "")
        price = to_decimal(d.get("price"))
        if price < 0:
            price = Decimal(0)

        return Drop(
            id=drop_id,
            title=str(d.get("title") or original_name),
            price=price,
            is_free=bool(d.get("isFree", False)),
            seller_wallet=str(d.get("sellerWallet") or ""),
            storage_key=str(d.get("filename") or ""),
            original_name=original_name,
            size=max(0, _safe_int(d.get("size"), 0)),
            mime_type=str(d.get("mimetype") or ""),
            description=str(d.get("description") or ""),
            category=str(d.get("category") or ""),
            downloads=max(0, _safe_int(d.get("downloads"), 0)),
            created_at=str(d.get("timestamp") or ""),
        )


def newest_first(drops) -> list[Drop]:
    return sorted(drops, key=lambda d: d.created_at_dt, reverse=True)
