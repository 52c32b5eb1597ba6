"""
Webhook request and event models.

WebhookRequest is built at the HTTP boundary before any parsing so the
signature is always checked against the exact bytes received. StripeEvent is
the validated envelope handed to the billing handler once a request has been
accepted.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class RejectionReason(str, Enum):
    INVALID_SIGNATURE = "invalid_signature"
    RATE_LIMITED = "rate_limited"
    MALFORMED_PAYLOAD = "malformed_payload"


class VerificationFailure(str, Enum):
    """Detail behind an invalid_signature rejection."""

    MISSING_SECRET = "missing_secret"
    MISSING_SIGNATURE = "missing_signature"
    MALFORMED_HEADER = "malformed_header"
    STALE_TIMESTAMP = "stale_timestamp"
    SIGNATURE_MISMATCH = "signature_mismatch"


@dataclass(frozen=True)
class WebhookRequest:
    raw_payload: bytes
    provided_signature: str
    received_at_epoch_ms: int
    client_identity: str

    def __post_init__(self) -> None:
        if not isinstance(self.raw_payload, (bytes, bytearray)):
            raise TypeError("raw_payload must be bytes")
        if isinstance(self.received_at_epoch_ms, bool) or not isinstance(self.received_at_epoch_ms, int):
            raise TypeError("received_at_epoch_ms must be an integer")
        if self.received_at_epoch_ms < 0:
            raise ValueError("received_at_epoch_ms must be non-negative")
        client_identity = str(self.client_identity).strip()
        if not client_identity:
            raise ValueError("client_identity is required")
        object.__setattr__(self, "raw_payload", bytes(self.raw_payload))
        object.__setattr__(self, "provided_signature", self.provided_signature or "")
        object.__setattr__(self, "client_identity", client_identity)


class StripeEventData(BaseModel):
    model_config = ConfigDict(extra="allow")

    object: Dict[str, Any]


class StripeEvent(BaseModel):
    """Minimal Stripe event envelope; unknown top-level fields are ignored."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    id: str = Field(..., min_length=1)
    type: str = Field(..., min_length=1)
    created: Optional[int] = None
    livemode: bool = False
    data: StripeEventData

    @field_validator("type")
    @classmethod
    def _strip_type(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("type is required")
        return value

    @property
    def data_object(self) -> Dict[str, Any]:
        return self.data.object
