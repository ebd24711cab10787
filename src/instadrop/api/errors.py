from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional


@dataclass(slots=True)
class ApiError(Exception):
    status_code: int
    code: str
    message: str
    details: Dict[str, Any]

    @staticmethod
    def bad_request(code: str, message: str, details: Optional[Dict[str, Any]] = None) -> "ApiError":
        return ApiError(400, code, message, details or {})

    @staticmethod
    def forbidden(code: str, message: str, details: Optional[Dict[str, Any]] = None) -> "ApiError":
        return ApiError(403, code, message, details or {})

    @staticmethod
    def not_found(code: str, message: str, details: Optional[Dict[str, Any]] = None) -> "ApiError":
        return ApiError(404, code, message, details or {})

    @staticmethod
    def unavailable(code: str, message: str, details: Optional[Dict[str, Any]] = None) -> "ApiError":
        return ApiError(503, code, message, details or {})

    @staticmethod
    def internal(code: str, message: str, details: Optional[Dict[str, Any]] = None) -> "ApiError":
        return ApiError(500, code, message, details or {})

    def to_body(self) -> Dict[str, Any]:
        err: Dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            err["details"] = dict(self.details)
        return {"ok": False, "error": err}


@dataclass(slots=True)
class PaymentRequired(Exception):
    """HTTP 402 protocol step: the caller must pay and retry with a tx reference.

    Not an error; carries everything needed to construct the payment.
    """

    price: Any
    currency: str
    recipient: str
    file_id: str
    protocol: str = "x402"

    status_code = 402

    def to_body(self) -> Dict[str, Any]:
        return {
            "ok": False,
            "error": {"code": "payment_required", "message": "Payment Required"},
            "payment": {
                "price": self.price,
                "currency": self.currency,
                "recipient": self.recipient,
                "fileId": self.file_id,
                "protocol": self.protocol,
            },
        }
