"""Exceptions raised by the OIDC relying-party helper.

Every failure is scoped to the call that triggered it. Lower-layer problems
(cache backend, HTTP transport, JSON/base64 decoding) are wrapped into one of
the kinds below with a stable message prefix identifying the failing
operation, and the original exception is chained as ``__cause__``.
"""


class OpenIdConnectError(Exception):
    """Base exception for all OIDC relying-party errors.

    Attributes:
        message: Human-readable error message
        context: Additional diagnostic context (never contains secrets)
    """

    def __init__(self, message: str, *, context: dict | None = None) -> None:
        """Initialize error.

        Args:
            message: Human-readable error message
            context: Additional context about the error
        """
        self.message = message
        self.context = context or {}
        super().__init__(message)


# ========================================
# Configuration
# ========================================


class ConfigurationError(OpenIdConnectError):
    """Raised when provider options are missing or invalid."""


class MissingOptionError(ConfigurationError):
    """Raised when a required constructor option is not supplied."""


class BadUrlError(ConfigurationError):
    """Raised when the metadata URL cannot be parsed."""


class IllegalSchemeError(ConfigurationError):
    """Raised when the metadata URL uses a scheme that is not allowed."""


class NegativeCacheDurationError(ConfigurationError):
    """Raised when the cache duration is negative."""


class NegativeLeewayError(ConfigurationError):
    """Raised when the clock-skew leeway is negative."""


class MissingConfigurationKeyError(ConfigurationError):
    """Raised when the discovery document lacks a requested key.

    Example:
        raise MissingConfigurationKeyError(
            "Required config key not defined: end_session_endpoint",
            context={"key": "end_session_endpoint"},
        )
    """

    def __init__(self, key: str) -> None:
        self.key = key
        super().__init__(f"Required config key not defined: {key}", context={"key": key})


# ========================================
# Transport, decoding and cache
# ========================================


class TransportError(OpenIdConnectError):
    """Raised on a network failure or a non-200 response."""


class DecodeError(OpenIdConnectError):
    """Raised when JSON, base64url or key material cannot be decoded."""


class UnsupportedKeyTypeError(DecodeError):
    """Raised when the JWKS holds a key that is not an RSA key."""

    def __init__(self, kid: str, kty: object) -> None:
        self.kid = kid
        self.kty = kty
        super().__init__(
            f"Unsupported key data for key id: {kid}",
            context={"kid": kid, "kty": kty},
        )


class CacheError(OpenIdConnectError):
    """Raised when the cache backend fails on get or set."""


# ========================================
# ID token validation
# ========================================


class TokenValidationError(OpenIdConnectError):
    """Raised when an ID token fails signature, algorithm or time checks."""


class ClaimsError(OpenIdConnectError):
    """Raised when a verified ID token carries an unexpected claim value.

    Attributes:
        claim: Name of the mismatched claim (aud, iss or nonce)
        expected: Value the relying party expected
        actual: Value found in the token
    """

    claim_label = "claim"

    def __init__(self, claim: str, expected: object, actual: object) -> None:
        self.claim = claim
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"ID token has incorrect {self.claim_label}: {actual}",
            context={"claim": claim, "expected": expected, "actual": actual},
        )


class AudienceMismatchError(ClaimsError):
    """Raised when ``aud`` does not match the configured client id."""

    claim_label = "audience"

    def __init__(self, expected: object, actual: object) -> None:
        super().__init__("aud", expected, actual)


class IssuerMismatchError(ClaimsError):
    """Raised when ``iss`` does not match the discovered issuer."""

    claim_label = "issuer"

    def __init__(self, expected: object, actual: object) -> None:
        super().__init__("iss", expected, actual)


class NonceMismatchError(ClaimsError):
    """Raised when ``nonce`` does not match the expected nonce."""

    claim_label = "nonce"

    def __init__(self, expected: object, actual: object) -> None:
        super().__init__("nonce", expected, actual)


# ========================================
# Request building and code exchange
# ========================================


class MissingParameterError(OpenIdConnectError):
    """Raised when a caller omits a mandatory request parameter."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f'Required parameter "{name}" missing', context={"parameter": name})


class CodeExchangeError(OpenIdConnectError):
    """Raised when exchanging an authorization code for an ID token fails."""
