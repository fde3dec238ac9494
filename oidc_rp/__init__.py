"""oidc-rp - OpenID Connect relying-party helper.

Discovers provider endpoints from a well-known metadata URL, caches the
discovery document and signing keys, builds authorization/logout URLs and
validates ID tokens (e.g. from Azure AD B2C).
"""

__version__ = "0.1.0"
__author__ = "oidc-rp Contributors"

from oidc_rp.config import (
    ProviderConfig,
    Settings,
    get_settings,
    load_settings_from_file,
    set_settings,
)

__all__ = [
    "ProviderConfig",
    "Settings",
    "__version__",
    "get_settings",
    "load_settings_from_file",
    "set_settings",
]
