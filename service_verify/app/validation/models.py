"""
Validation outcome types.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Mapping, Optional, Union


class FailureReason(str, Enum):
    """Why a presented token was not accepted."""
    MISSING_AUTH_HEADER = "missing_auth_header"
    MALFORMED_TOKEN = "malformed_token"
    UNKNOWN_SIGNING_KEY = "unknown_signing_key"
    SIGNATURE_INVALID = "signature_invalid"
    TOKEN_EXPIRED = "token_expired"
    TOKEN_NOT_YET_VALID = "token_not_yet_valid"
    ISSUER_MISMATCH = "issuer_mismatch"
    AUDIENCE_MISMATCH = "audience_mismatch"
    DISCOVERY_FAILURE = "discovery_failure"


@dataclass(frozen=True)
class ValidatedClaims:
    """Claims of a token that passed every check."""

    issuer: str
    audience: str
    subject: Optional[str]
    expiry: datetime
    issued_at: Optional[datetime]
    not_before: Optional[datetime]
    claims: Mapping[str, Any]

    def get(self, name: str, default: Any = None) -> Any:
        return self.claims.get(name, default)


@dataclass(frozen=True)
class Validated:
    claims: ValidatedClaims
    key_id: str


@dataclass(frozen=True)
class Rejected:
    reason: FailureReason
    detail: str
    key_id: Optional[str] = None


ValidationOutcome = Union[Validated, Rejected]
