"""ID token validation.

Validates ID tokens returned by the identity provider in a fixed order,
where the first failing step ends validation:

1. Load verification keys (JWKS, cached)
2. Verify the RS256 signature with the key named by the token's ``kid``
   and check ``exp``/``nbf``/``iat`` with the configured leeway
3. ``aud`` must match the client id
4. ``iss`` must match the issuer from the discovery document
5. ``nonce`` must match the nonce sent with the authorization request

Claim contents are only inspected after the signature has been verified.
"""

import hashlib
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from authlib.jose import JsonWebToken, RSAKey
from authlib.jose.errors import (
    BadSignatureError,
    ExpiredTokenError,
    InvalidTokenError,
    JoseError,
    MissingAlgorithmError,
    UnsupportedAlgorithmError,
)

from oidc_rp.config import ProviderConfig
from oidc_rp.domain.exceptions import (
    AudienceMismatchError,
    ClaimsError,
    IssuerMismatchError,
    NonceMismatchError,
    OpenIdConnectError,
    TokenValidationError,
)
from oidc_rp.domain.models import IdTokenClaims
from oidc_rp.infra.observability.metrics import record_id_token_validation
from oidc_rp.security.discovery import MetadataResolver
from oidc_rp.security.jwks import KeyStore

logger = logging.getLogger(__name__)

ALLOWED_ALGORITHMS = ["RS256"]

_jwt = JsonWebToken(ALLOWED_ALGORITHMS)


class UnknownKeyIdError(JoseError):
    """Raised while decoding when no verification key matches the token's kid."""

    error = "unknown_key_id"


def _failure_reason(error: Exception) -> str:
    if isinstance(error, ExpiredTokenError):
        return "token expired"
    if isinstance(error, InvalidTokenError):
        return "token not yet valid"
    if isinstance(error, BadSignatureError):
        return "signature verification failed"
    if isinstance(error, (UnsupportedAlgorithmError, MissingAlgorithmError)):
        return "unsupported algorithm"
    if isinstance(error, UnknownKeyIdError):
        return "unknown key id"
    if isinstance(error, JoseError):
        return "invalid token"
    return "malformed token"


def hash_token(token: str) -> str:
    """Hash a token for log correlation (never log the token itself)."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


ClaimCheck = Callable[[dict[str, Any], str], Awaitable[None]]


class TokenValidator:
    """Validates ID tokens issued by the configured provider.

    Example:
        validator = TokenValidator(config, resolver, key_store)
        claims = await validator.validate(id_token, nonce=session_nonce)
        print(claims.sub, claims["email"])
    """

    def __init__(
        self,
        config: ProviderConfig,
        resolver: MetadataResolver,
        key_store: KeyStore,
    ) -> None:
        """Initialize token validator.

        Args:
            config: Provider configuration (client id, leeway)
            resolver: Metadata resolver (issuer)
            key_store: Key store (verification keys)
        """
        self.config = config
        self._resolver = resolver
        self._key_store = key_store
        self._claim_checks: tuple[ClaimCheck, ...] = (
            self._check_audience,
            self._check_issuer,
            self._check_nonce,
        )

    async def validate(self, id_token: str, nonce: str) -> IdTokenClaims:
        """Validate an ID token and return its claims.

        Args:
            id_token: Compact-serialized ID token
            nonce: Nonce sent with the authorization request

        Returns:
            Claims of the validated token

        Raises:
            TokenValidationError: If keys cannot be loaded, or the signature,
                algorithm or time claims are invalid
            AudienceMismatchError: If aud does not match the client id
            IssuerMismatchError: If iss does not match the discovered issuer
            NonceMismatchError: If nonce does not match the expected nonce
        """
        token_hash = hash_token(id_token)[:16]

        try:
            payload = await self._verify(id_token)
            for check in self._claim_checks:
                await check(payload, nonce)
        except TokenValidationError as e:
            record_id_token_validation("failure", e.context.get("reason", "invalid"))
            logger.warning(
                "ID token validation failed",
                extra={"token_hash": token_hash, "reason": e.context.get("reason")},
            )
            raise
        except ClaimsError as e:
            record_id_token_validation("failure", e.claim)
            logger.warning(
                "ID token claims rejected",
                extra={"token_hash": token_hash, "claim": e.claim, "reason": e.message},
            )
            raise

        record_id_token_validation("success")
        logger.info("ID token validated", extra={"token_hash": token_hash})
        return IdTokenClaims.from_payload(payload)

    async def _verify(self, id_token: str) -> dict[str, Any]:
        try:
            keys = await self._key_store.get_verification_keys()
        except OpenIdConnectError as e:
            raise TokenValidationError(
                "ID token validation failed: could not load verification keys",
                context={"reason": "keys unavailable", "cause": e.message},
            ) from e

        def load_key(header: dict[str, Any], payload: Any) -> RSAKey:
            kid = header.get("kid")
            if kid is None or kid not in keys:
                raise UnknownKeyIdError(f"no verification key for kid {kid}")
            return keys[kid]

        try:
            claims = _jwt.decode(id_token, load_key)
            claims.validate(leeway=self.config.leeway_seconds)
        except (JoseError, ValueError, TypeError) as e:
            reason = _failure_reason(e)
            raise TokenValidationError(
                f"ID token validation failed: {reason}", context={"reason": reason}
            ) from e

        return dict(claims)

    async def _check_audience(self, claims: dict[str, Any], nonce: str) -> None:
        aud = claims.get("aud")
        client_id = self.config.client_id
        if isinstance(aud, list):
            if client_id in aud:
                return
        elif aud == client_id:
            return
        raise AudienceMismatchError(expected=client_id, actual=aud)

    async def _check_issuer(self, claims: dict[str, Any], nonce: str) -> None:
        issuer = await self._resolver.get_issuer()
        if claims.get("iss") != issuer:
            raise IssuerMismatchError(expected=issuer, actual=claims.get("iss"))

    async def _check_nonce(self, claims: dict[str, Any], nonce: str) -> None:
        if claims.get("nonce") != nonce:
            raise NonceMismatchError(expected=nonce, actual=claims.get("nonce"))
