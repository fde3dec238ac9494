"""Domain models for the OIDC relying-party helper."""

from dataclasses import dataclass, field
from typing import Any

# Endpoint names referenced from the provider's discovery document
AUTHORIZATION_ENDPOINT = "authorization_endpoint"
TOKEN_ENDPOINT = "token_endpoint"
USERINFO_ENDPOINT = "userinfo_endpoint"
END_SESSION_ENDPOINT = "end_session_endpoint"
JWKS_URI = "jwks_uri"
ISSUER = "issuer"

# Decoded discovery document (flat, string-keyed JSON object)
DiscoveryDocument = dict[str, Any]

# Serializable JWKS snapshot as stored in the cache: kid -> {"kty", "n", "e"}
RawKeySet = dict[str, dict[str, str]]


@dataclass(frozen=True)
class IdTokenClaims:
    """Claims of a fully validated ID token.

    Only produced after signature, time, audience, issuer and nonce checks
    have all passed.

    Attributes:
        aud: Audience the token was issued for
        iss: Issuer that signed the token
        nonce: Nonce echoed from the authorization request
        sub: Subject identifier (None if the provider omits it)
        claims: The complete decoded payload, unchanged
    """

    aud: str | list[str]
    iss: str
    nonce: str
    sub: str | None = None
    claims: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "IdTokenClaims":
        """Build claims from a verified token payload."""
        return cls(
            aud=payload["aud"],
            iss=payload["iss"],
            nonce=payload["nonce"],
            sub=payload.get("sub"),
            claims=dict(payload),
        )

    def get(self, name: str, default: Any = None) -> Any:
        """Return a pass-through claim by name."""
        return self.claims.get(name, default)

    def __getitem__(self, name: str) -> Any:
        return self.claims[name]
