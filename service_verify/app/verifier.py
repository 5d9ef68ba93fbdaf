"""
Request-path token verification: header parsing, key lookup, validation
and identity extraction.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Iterable, Optional

from shared.config import DEFAULT_IDENTITY_CLAIMS
from shared.errors import DiscoveryError
from shared.logging import get_logger, set_subject
from shared.metrics import MetricsCollector

from .identity.extractor import extract_identity
from .jwks.cache import SigningKeyCache
from .validation.models import FailureReason, Rejected, Validated, ValidatedClaims, ValidationOutcome
from .validation.token_validator import TokenValidator


@dataclass(frozen=True)
class VerificationResult:
    """Outcome of verifying one request plus the extracted identity."""

    outcome: ValidationOutcome
    identity: Optional[str] = None

    @property
    def authenticated(self) -> bool:
        return isinstance(self.outcome, Validated)

    @property
    def claims(self) -> Optional[ValidatedClaims]:
        if isinstance(self.outcome, Validated):
            return self.outcome.claims
        return None

    @property
    def reason(self) -> Optional[FailureReason]:
        if isinstance(self.outcome, Rejected):
            return self.outcome.reason
        return None


def parse_bearer_token(authorization: Optional[str]) -> Optional[str]:
    """Extract the token from an ``Authorization: Bearer <token>`` value."""
    if not authorization:
        return None
    scheme, _, token = authorization.strip().partition(" ")
    if scheme.lower() != "bearer":
        return None
    token = token.strip()
    return token or None


class TokenVerifier:
    """Verifies bearer tokens using the shared signing key cache."""

    def __init__(
        self,
        key_cache: SigningKeyCache,
        validator: TokenValidator,
        *,
        identity_claims: Iterable[str] = DEFAULT_IDENTITY_CLAIMS,
        metrics: Optional[MetricsCollector] = None,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self.key_cache = key_cache
        self.validator = validator
        self.identity_claims = tuple(identity_claims)
        self.metrics = metrics
        self.logger = get_logger("verifier.validation")
        self._now = now

    async def authenticate(self, authorization: Optional[str]) -> VerificationResult:
        """Verify the token carried by an Authorization header value."""
        token = parse_bearer_token(authorization)
        if token is None:
            return self._finish(Rejected(
                FailureReason.MISSING_AUTH_HEADER,
                "Missing or invalid Authorization header",
            ))
        return await self.verify_token(token)

    async def verify_token(self, token: str) -> VerificationResult:
        """Verify a raw token string.

        An unknown key id triggers exactly one forced key refresh followed
        by one more validation attempt.
        """
        try:
            key_set = await self.key_cache.get_keys()
            outcome = self.validator.validate(token, key_set, self._now())

            if isinstance(outcome, Rejected) and outcome.reason is FailureReason.UNKNOWN_SIGNING_KEY:
                refreshed = await self.key_cache.refresh_for_key(outcome.key_id)
                if refreshed is not key_set:
                    outcome = self.validator.validate(token, refreshed, self._now())
        except DiscoveryError as exc:
            outcome = Rejected(FailureReason.DISCOVERY_FAILURE, str(exc))

        return self._finish(outcome)

    def _finish(self, outcome: ValidationOutcome) -> VerificationResult:
        if isinstance(outcome, Rejected):
            self.logger.warning(
                "Token verification failed",
                reason=outcome.reason.value,
                error=outcome.detail,
                kid=outcome.key_id,
            )
            self._record(outcome.reason.value)
            return VerificationResult(outcome=outcome)

        identity = extract_identity(outcome.claims, self.identity_claims)
        set_subject(outcome.claims.subject)
        self.logger.info(
            "Token verified successfully",
            sub=outcome.claims.subject,
            kid=outcome.key_id,
            identity_found=identity is not None,
        )
        self._record("accepted")
        return VerificationResult(outcome=outcome, identity=identity)

    def _record(self, outcome: str) -> None:
        if self.metrics is not None:
            self.metrics.record_verification(outcome)
