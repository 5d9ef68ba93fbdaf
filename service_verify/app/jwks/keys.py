"""
Signing key model built from JSON Web Keys.
"""

from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Dict, Iterable, Iterator, Mapping, Optional, Tuple

from jose import jwk
from jose.backends.base import Key
from jose.exceptions import JOSEError


# Asymmetric algorithms only; a provider never publishes shared secrets.
SUPPORTED_ALGORITHMS = ("RS256", "RS384", "RS512", "ES256", "ES384", "ES512")

_EC_CURVE_ALGORITHMS = {
    "P-256": "ES256",
    "P-384": "ES384",
    "P-521": "ES512",
}


class KeyParseError(ValueError):
    """A JWK entry cannot be used as a signing key."""


def _resolve_algorithm(data: Mapping[str, Any]) -> str:
    algorithm = data.get("alg")
    if algorithm is None:
        # Some providers (Entra ID among them) omit "alg" on their keys
        kty = data.get("kty")
        if kty == "RSA":
            algorithm = "RS256"
        elif kty == "EC":
            algorithm = _EC_CURVE_ALGORITHMS.get(data.get("crv"))

    if algorithm not in SUPPORTED_ALGORITHMS:
        raise KeyParseError(f"Unsupported signing algorithm: {algorithm!r}")
    return algorithm


@dataclass(frozen=True)
class SigningKey:
    """A provider public key usable for signature verification."""

    key_id: str
    algorithm: str
    key: Key
    jwk: Mapping[str, Any]

    @classmethod
    def from_jwk(cls, data: Mapping[str, Any]) -> "SigningKey":
        """Build a signing key from one entry of a JWKS ``keys`` array."""
        if not isinstance(data, Mapping):
            raise KeyParseError("JWK entry is not an object")

        key_id = data.get("kid")
        if not isinstance(key_id, str) or not key_id:
            raise KeyParseError("JWK entry missing key id (kid)")

        use = data.get("use")
        if use is not None and use != "sig":
            raise KeyParseError(f"JWK {key_id} is not a signing key (use={use})")

        algorithm = _resolve_algorithm(data)
        try:
            key = jwk.construct(dict(data), algorithm)
        except (JOSEError, ValueError, TypeError) as exc:
            raise KeyParseError(f"JWK {key_id} has invalid key material: {exc}") from exc

        return cls(
            key_id=key_id,
            algorithm=algorithm,
            key=key,
            jwk=MappingProxyType(dict(data)),
        )


class SigningKeySet:
    """Immutable set of signing keys indexed by key id.

    Insertion order is preserved for diagnostics. A duplicated key id keeps
    its first occurrence.
    """

    def __init__(self, keys: Iterable[SigningKey] = ()):
        indexed: Dict[str, SigningKey] = {}
        for key in keys:
            indexed.setdefault(key.key_id, key)
        self._keys = MappingProxyType(indexed)

    def get(self, key_id: Optional[str]) -> Optional[SigningKey]:
        if key_id is None:
            return None
        return self._keys.get(key_id)

    @property
    def key_ids(self) -> Tuple[str, ...]:
        return tuple(self._keys)

    def __contains__(self, key_id: object) -> bool:
        return key_id in self._keys

    def __iter__(self) -> Iterator[SigningKey]:
        return iter(self._keys.values())

    def __len__(self) -> int:
        return len(self._keys)

    def __repr__(self) -> str:
        return f"SigningKeySet(key_ids={list(self._keys)!r})"
