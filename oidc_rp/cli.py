"""Command-line interface for the OIDC relying-party helper.

Useful for checking a provider configuration by hand: print the discovered
endpoints, build authorization/logout URLs and validate an ID token.
Configuration is loaded from a file, environment variables and command-line
arguments with the usual precedence.
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from oidc_rp import __version__
from oidc_rp.config import Settings, load_settings_from_file, set_settings
from oidc_rp.domain.exceptions import OpenIdConnectError
from oidc_rp.domain.models import (
    AUTHORIZATION_ENDPOINT,
    END_SESSION_ENDPOINT,
    ISSUER,
    JWKS_URI,
    TOKEN_ENDPOINT,
    USERINFO_ENDPOINT,
)
from oidc_rp.infra.cache import CacheStoreError, RedisCacheStore, create_cache_store
from oidc_rp.infra.observability.logging import get_correlation_id, setup_logging
from oidc_rp.infra.observability.metrics import get_metrics_text
from oidc_rp.security.provider import OpenIdConnectProvider
from oidc_rp.security.urls import generate_random_state

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_USAGE = 2

DISCOVERED_ENDPOINTS = (
    ISSUER,
    AUTHORIZATION_ENDPOINT,
    TOKEN_ENDPOINT,
    USERINFO_ENDPOINT,
    END_SESSION_ENDPOINT,
    JWKS_URI,
)


def create_argument_parser() -> argparse.ArgumentParser:
    """Create command-line argument parser.

    Returns:
        Configured ArgumentParser instance
    """
    parser = argparse.ArgumentParser(
        prog="oidc-rp",
        description="OpenID Connect relying-party helper",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )

    parser.add_argument(
        "--config", "-c", type=Path, help="Path to configuration file (YAML or TOML)"
    )

    parser.add_argument("--metadata-url", help="OIDC discovery (well-known metadata) URL")
    parser.add_argument("--client-id", help="OAuth client ID")
    parser.add_argument("--client-secret", help="OAuth client secret")
    parser.add_argument("--redirect-uri", help="Registered redirect URI")
    parser.add_argument(
        "--allow-insecure-scheme",
        action="store_true",
        help="Allow a plain http metadata URL (development only)",
    )

    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level",
    )
    parser.add_argument("--log-format", choices=["json", "text"], help="Log output format")

    parser.add_argument("--version", "-v", action="version", version=f"%(prog)s {__version__}")

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("endpoints", help="Print the discovered endpoints as JSON")

    authorize = subparsers.add_parser("authorize-url", help="Build an authorization URL")
    authorize.add_argument("--state", help="State value (generated if omitted)")
    authorize.add_argument("--nonce", help="Nonce value (generated if omitted)")
    authorize.add_argument("--scope", help="Scope (default: openid)")

    logout = subparsers.add_parser("logout-url", help="Build an end-session URL")
    logout.add_argument("--post-logout-redirect-uri", help="Post-logout redirect URI")
    logout.add_argument("--state", help="State value")
    logout.add_argument("--id-token-hint", help="Previously issued ID token")

    validate = subparsers.add_parser("validate", help="Validate an ID token")
    validate.add_argument("token", help="ID token (compact JWS)")
    validate.add_argument("--nonce", required=True, help="Expected nonce")

    state = subparsers.add_parser("generate-state", help="Generate a random state/nonce value")
    state.add_argument("--length", type=int, default=32, help="Length of the value")

    subparsers.add_parser("metrics", help="Print metrics in Prometheus text format")

    return parser


def load_config_from_cli(parsed_args: argparse.Namespace) -> Settings:
    """Load configuration from parsed CLI arguments and environment.

    Args:
        parsed_args: Parsed command-line arguments

    Returns:
        Configured Settings instance
    """
    if parsed_args.config:
        settings = load_settings_from_file(parsed_args.config)
    else:
        settings = Settings()

    cli_overrides = {}

    if parsed_args.metadata_url is not None:
        cli_overrides["metadata_url"] = parsed_args.metadata_url

    if parsed_args.client_id is not None:
        cli_overrides["client_id"] = parsed_args.client_id

    if parsed_args.client_secret is not None:
        cli_overrides["client_secret"] = parsed_args.client_secret

    if parsed_args.redirect_uri is not None:
        cli_overrides["redirect_uri"] = parsed_args.redirect_uri

    if parsed_args.allow_insecure_scheme:
        cli_overrides["allow_insecure_scheme"] = True

    if parsed_args.log_level is not None:
        cli_overrides["log_level"] = parsed_args.log_level

    if parsed_args.log_format is not None:
        cli_overrides["log_format"] = parsed_args.log_format

    if cli_overrides:
        settings = Settings(**{**settings.model_dump(), **cli_overrides})

    return settings


async def run_command(args: argparse.Namespace, settings: Settings) -> int:
    """Run a provider subcommand and print its result to stdout.

    Args:
        args: Parsed command-line arguments
        settings: Effective settings

    Returns:
        Exit code
    """
    cache = create_cache_store(settings.cache_backend, settings.redis_url, settings.redis_key_prefix)
    if isinstance(cache, RedisCacheStore):
        await cache.init()

    try:
        provider = OpenIdConnectProvider(
            settings.to_provider_config(),
            cache=cache,
            timeout_seconds=settings.http_timeout_seconds,
        )

        if args.command == "endpoints":
            document = await provider.resolver.get_configuration()
            endpoints = {name: document.get(name) for name in DISCOVERED_ENDPOINTS}
            print(json.dumps(endpoints, indent=2))

        elif args.command == "authorize-url":
            params = {
                "state": args.state or provider.generate_state(),
                "nonce": args.nonce or provider.generate_nonce(),
            }
            if args.scope:
                params["scope"] = args.scope
            url = await provider.authorization_url(params)
            print(json.dumps({"url": url, **params}, indent=2))

        elif args.command == "logout-url":
            print(
                await provider.end_session_url(
                    args.post_logout_redirect_uri, args.state, args.id_token_hint
                )
            )

        elif args.command == "validate":
            claims = await provider.validate_id_token(args.token, args.nonce)
            print(json.dumps(claims.claims, indent=2, default=str))

    finally:
        if isinstance(cache, RedisCacheStore):
            await cache.close()

    return EXIT_OK


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the oidc-rp CLI.

    Returns:
        Exit code (0 for success, non-zero for error)
    """
    parser = create_argument_parser()
    args = parser.parse_args(argv)

    if args.command == "generate-state":
        try:
            print(generate_random_state(args.length))
        except ValueError as e:
            print(f"Error: {e}", file=sys.stderr)
            return EXIT_USAGE
        return EXIT_OK

    if args.command == "metrics":
        print(get_metrics_text(), end="")
        return EXIT_OK

    try:
        settings = load_config_from_cli(args)
    except (ValueError, FileNotFoundError) as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return EXIT_USAGE

    set_settings(settings)
    setup_logging(settings.log_level, json_format=settings.log_format == "json")
    # asyncio.run copies the context, so every log line of this run shares one ID
    get_correlation_id()

    try:
        return asyncio.run(run_command(args, settings))
    except (OpenIdConnectError, CacheStoreError) as e:
        logger.error("Command failed", extra={"error": str(e)})
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_ERROR


if __name__ == "__main__":
    sys.exit(main())
