"""
Token validation against a signing key set.
"""

import json
from datetime import datetime, timedelta, timezone
from numbers import Real
from types import MappingProxyType
from typing import Any, Dict, Optional

from jose import jws
from jose.exceptions import JOSEError

from ..jwks.keys import SigningKeySet
from .models import FailureReason, Rejected, Validated, ValidatedClaims, ValidationOutcome


DEFAULT_CLOCK_SKEW = timedelta(minutes=5)


class _Malformed(Exception):
    pass


def _numeric_date(claims: Dict[str, Any], name: str, required: bool = False) -> Optional[float]:
    value = claims.get(name)
    if value is None:
        if required:
            raise _Malformed(f"Token missing '{name}' claim")
        return None
    if isinstance(value, bool) or not isinstance(value, Real):
        raise _Malformed(f"Token '{name}' claim is not a NumericDate")
    return float(value)


def _to_datetime(value: Optional[float]) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromtimestamp(value, tz=timezone.utc)


def _audience_matches(audience: Any, expected: str) -> bool:
    if isinstance(audience, str):
        return audience == expected
    if isinstance(audience, list):
        return expected in [item for item in audience if isinstance(item, str)]
    return False


def validate(
    token: str,
    expected_issuer: str,
    expected_audience: str,
    key_set: SigningKeySet,
    now: datetime,
    clock_skew: timedelta = DEFAULT_CLOCK_SKEW,
) -> ValidationOutcome:
    """Validate ``token`` and return ``Validated`` or ``Rejected``.

    Checks run in a fixed order (structure, key lookup, signature, lifetime,
    issuer, audience) and the first failure decides the reason. Nothing is
    accepted unless the signature verifies against a key in ``key_set``.
    """
    # Structure
    if not isinstance(token, str) or token.count(".") != 2:
        return Rejected(FailureReason.MALFORMED_TOKEN, "Token is not a three-part JWS")
    try:
        header = jws.get_unverified_header(token)
        claims = json.loads(jws.get_unverified_claims(token))
    except (JOSEError, ValueError) as exc:
        return Rejected(FailureReason.MALFORMED_TOKEN, f"Token could not be decoded: {exc}")
    if not isinstance(claims, dict):
        return Rejected(FailureReason.MALFORMED_TOKEN, "Token payload is not a JSON object")

    key_id = header.get("kid")
    if not isinstance(key_id, str) or not key_id:
        return Rejected(FailureReason.MALFORMED_TOKEN, "Token header missing key id (kid)")

    # Key lookup
    signing_key = key_set.get(key_id)
    if signing_key is None:
        return Rejected(
            FailureReason.UNKNOWN_SIGNING_KEY,
            f"Signing key not found: {key_id}",
            key_id=key_id,
        )

    # Signature, with the key's own algorithm only
    if header.get("alg") != signing_key.algorithm:
        return Rejected(
            FailureReason.SIGNATURE_INVALID,
            f"Token alg {header.get('alg')!r} does not match key alg {signing_key.algorithm!r}",
            key_id=key_id,
        )
    try:
        jws.verify(token, signing_key.key, [signing_key.algorithm])
    except JOSEError as exc:
        return Rejected(FailureReason.SIGNATURE_INVALID, str(exc), key_id=key_id)

    # Lifetime
    try:
        expiry = _numeric_date(claims, "exp", required=True)
        not_before = _numeric_date(claims, "nbf")
        issued_at = _numeric_date(claims, "iat")
        expiry_dt = _to_datetime(expiry)
        not_before_dt = _to_datetime(not_before)
        issued_at_dt = _to_datetime(issued_at)
    except _Malformed as exc:
        return Rejected(FailureReason.MALFORMED_TOKEN, str(exc), key_id=key_id)
    except (OverflowError, OSError, ValueError) as exc:
        return Rejected(FailureReason.MALFORMED_TOKEN, f"Token time claim out of range: {exc}", key_id=key_id)

    current = now.timestamp()
    skew = clock_skew.total_seconds()
    if expiry + skew <= current:
        return Rejected(
            FailureReason.TOKEN_EXPIRED,
            f"Token expired at {expiry_dt.isoformat()}",
            key_id=key_id,
        )
    if not_before is not None and not_before - skew > current:
        return Rejected(
            FailureReason.TOKEN_NOT_YET_VALID,
            f"Token not valid before {not_before_dt.isoformat()}",
            key_id=key_id,
        )

    # Issuer and audience
    issuer = claims.get("iss")
    if issuer != expected_issuer:
        return Rejected(
            FailureReason.ISSUER_MISMATCH,
            f"Unexpected issuer: {issuer!r}",
            key_id=key_id,
        )
    if not _audience_matches(claims.get("aud"), expected_audience):
        return Rejected(
            FailureReason.AUDIENCE_MISMATCH,
            f"Unexpected audience: {claims.get('aud')!r}",
            key_id=key_id,
        )

    subject = claims.get("sub")
    return Validated(
        claims=ValidatedClaims(
            issuer=issuer,
            audience=expected_audience,
            subject=subject if isinstance(subject, str) else None,
            expiry=expiry_dt,
            issued_at=issued_at_dt,
            not_before=not_before_dt,
            claims=MappingProxyType(claims),
        ),
        key_id=key_id,
    )


class TokenValidator:
    """Binds the expected issuer, audience and skew for repeated validation."""

    def __init__(self, issuer: str, audience: str, clock_skew: timedelta = DEFAULT_CLOCK_SKEW):
        self.issuer = issuer
        self.audience = audience
        self.clock_skew = clock_skew

    def validate(self, token: str, key_set: SigningKeySet, now: Optional[datetime] = None) -> ValidationOutcome:
        return validate(
            token,
            self.issuer,
            self.audience,
            key_set,
            now or datetime.now(timezone.utc),
            self.clock_skew,
        )
