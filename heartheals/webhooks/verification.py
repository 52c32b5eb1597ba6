"""Webhook signature verification: constant-time HMAC with replay protection.

Security contract:
- Digests are compared with hmac.compare_digest() (constant-time)
- Missing secret, missing header or unparsable header -> invalid (fail-closed)
- Signed timestamp must be within 300s of receipt to block replays
- verify() never raises; callers always get a VerificationResult

Header format (Stripe v1 scheme):
    Stripe-Signature: t=<unix seconds>,v1=<hex digest>[,v1=<hex digest>...]

The signed payload is ``b"<t>." + raw_body`` so the timestamp cannot be
swapped without invalidating the digest.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import time
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from .models import VerificationFailure

logger = logging.getLogger(__name__)

DEFAULT_TOLERANCE_SECONDS = 300
SIGNATURE_SCHEME = "v1"


@dataclass(frozen=True)
class VerificationResult:
    valid: bool
    reason: Optional[VerificationFailure] = None


@dataclass(frozen=True)
class ParsedSignatureHeader:
    timestamp: int
    signatures: List[str] = field(default_factory=list)


class MalformedSignatureHeader(ValueError):
    pass


def parse_signature_header(header: str) -> ParsedSignatureHeader:
    """Parse ``t=...,v1=...`` into a timestamp and the list of v1 digests.

    Raises MalformedSignatureHeader when the timestamp is missing or not an
    integer, or when no v1 digest is present.
    """
    timestamp: Optional[int] = None
    signatures: List[str] = []

    for item in header.split(","):
        kv = item.strip().split("=", 1)
        if len(kv) != 2:
            continue
        key, value = kv[0].strip(), kv[1].strip()
        if key == "t":
            try:
                timestamp = int(value)
            except ValueError as exc:
                raise MalformedSignatureHeader("timestamp is not an integer") from exc
        elif key == SIGNATURE_SCHEME and value:
            signatures.append(value)

    if timestamp is None:
        raise MalformedSignatureHeader("timestamp missing")
    if not signatures:
        raise MalformedSignatureHeader(f"no {SIGNATURE_SCHEME} signature")
    return ParsedSignatureHeader(timestamp=timestamp, signatures=signatures)


def compute_signature(payload: bytes, secret: str, timestamp: int) -> str:
    signed_payload = f"{timestamp}.".encode("utf-8") + payload
    return hmac.new(secret.encode("utf-8"), signed_payload, hashlib.sha256).hexdigest()


def generate_signature_header(payload: bytes, secret: str, timestamp: Optional[int] = None) -> str:
    """Build a Stripe-Signature header value for ``payload`` (tests, local replays)."""
    ts = int(time.time()) if timestamp is None else timestamp
    return f"t={ts},{SIGNATURE_SCHEME}={compute_signature(payload, secret, ts)}"


class SignatureVerifier:
    """Stateless verifier; safe to share across concurrent requests."""

    def __init__(self, tolerance_seconds: int = DEFAULT_TOLERANCE_SECONDS) -> None:
        if tolerance_seconds <= 0:
            raise ValueError("tolerance_seconds must be positive")
        self.tolerance_seconds = tolerance_seconds

    def verify(
        self,
        raw_payload: bytes,
        provided_signature: Optional[str],
        shared_secret: Optional[str],
        received_at_epoch_ms: int,
    ) -> VerificationResult:
        try:
            return self._verify(raw_payload, provided_signature, shared_secret, received_at_epoch_ms)
        except Exception as exc:
            # Any unexpected input shape is treated as a bad signature.
            logger.warning(
                "Webhook signature verification errored - rejecting",
                extra={"error_type": type(exc).__name__},
            )
            return VerificationResult(valid=False, reason=VerificationFailure.MALFORMED_HEADER)

    def _verify(
        self,
        raw_payload: bytes,
        provided_signature: Optional[str],
        shared_secret: Optional[str],
        received_at_epoch_ms: int,
    ) -> VerificationResult:
        if not shared_secret:
            logger.warning("Webhook secret not set - rejecting webhook")
            return VerificationResult(valid=False, reason=VerificationFailure.MISSING_SECRET)
        if not provided_signature:
            return VerificationResult(valid=False, reason=VerificationFailure.MISSING_SIGNATURE)

        try:
            parsed = parse_signature_header(provided_signature)
        except MalformedSignatureHeader as exc:
            logger.info("Malformed webhook signature header", extra={"error": str(exc)})
            return VerificationResult(valid=False, reason=VerificationFailure.MALFORMED_HEADER)

        skew_seconds, stale = self._check_timestamp(parsed.timestamp, received_at_epoch_ms)
        if stale:
            logger.warning(
                "Webhook timestamp outside tolerance",
                extra={"timestamp": parsed.timestamp, "skew_seconds": skew_seconds},
            )
            return VerificationResult(valid=False, reason=VerificationFailure.STALE_TIMESTAMP)

        expected = compute_signature(bytes(raw_payload), shared_secret, parsed.timestamp).encode("ascii")
        # no short-circuit: every candidate goes through compare_digest.
        # Bytes on both sides; str compare_digest rejects non-ASCII input.
        matched = False
        for candidate in parsed.signatures:
            if hmac.compare_digest(expected, candidate.encode("utf-8")):
                matched = True
        if not matched:
            return VerificationResult(valid=False, reason=VerificationFailure.SIGNATURE_MISMATCH)

        return VerificationResult(valid=True)

    def _check_timestamp(self, signed_at_seconds: int, received_at_epoch_ms: int) -> Tuple[float, bool]:
        skew_seconds = abs(received_at_epoch_ms - signed_at_seconds * 1000) / 1000.0
        return skew_seconds, skew_seconds > self.tolerance_seconds


def verify(
    raw_payload: bytes,
    provided_signature: Optional[str],
    shared_secret: Optional[str],
    received_at_epoch_ms: int,
) -> VerificationResult:
    """Module-level convenience using the default 5 minute tolerance."""
    return SignatureVerifier().verify(raw_payload, provided_signature, shared_secret, received_at_epoch_ms)
