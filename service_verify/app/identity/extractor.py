"""
Claims extractor: picks the caller identity from validated claims.
"""

from typing import Any, Iterable, Mapping, Optional, Union

from shared.config import DEFAULT_IDENTITY_CLAIMS

from ..validation.models import ValidatedClaims


def _candidate(value: Any) -> Optional[str]:
    if isinstance(value, str):
        return value.strip() or None
    # Multi-valued claims such as B2C "emails" contribute their first entry
    if isinstance(value, (list, tuple)):
        for item in value:
            if isinstance(item, str) and item.strip():
                return item.strip()
    return None


def extract_identity(
    claims: Union[ValidatedClaims, Mapping[str, Any]],
    preference: Iterable[str] = DEFAULT_IDENTITY_CLAIMS,
) -> Optional[str]:
    """Return the first present identity claim in ``preference`` order.

    First match wins and nothing is merged. ``None`` means no candidate
    claim was present, which is not a validation failure.
    """
    source = claims.claims if isinstance(claims, ValidatedClaims) else claims
    for name in preference:
        identity = _candidate(source.get(name))
        if identity is not None:
            return identity
    return None
