#!/usr/bin/env python3
"""
remote_auth_cli.py — inspect and reset stored OAuth credentials for a remote MCP server.

  remote-auth https://mcp.example.com/sse --show
  remote-auth https://mcp.example.com/sse --invalidate client
  remote-auth https://mcp.example.com/sse --authorize https://auth.example.com/authorize

--static-oauth-client-metadata / --static-oauth-client-info take inline
JSON or @path to a YAML/JSON file. Credentials live in MCP_REMOTE_CONFIG_DIR
(default ~/.mcp-auth).
"""

import argparse
import asyncio
import json
import logging
from pathlib import Path
from typing import Any

import yaml

from auth_store import CredentialStore, get_config_dir
from oauth_scopes import normalize_scope
from remote_oauth import (
    INVALIDATION_SCOPES,
    BrowserLaunchError,
    OAuthProviderOptions,
    RemoteOAuthClientProvider,
)

logger = logging.getLogger("remote-oauth")


def _load_static_object(value: str | None, flag: str) -> dict[str, Any] | None:
    """Parse inline JSON or an @file (YAML or JSON) into a dict."""
    if value is None:
        return None
    if value.startswith("@"):
        path = Path(value[1:]).expanduser()
        if not path.exists():
            raise SystemExit(f"{flag}: file not found: {path}")
        with open(path) as f:
            try:
                raw = yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise SystemExit(f"{flag}: invalid YAML/JSON in {path}: {e}")
    else:
        try:
            raw = json.loads(value)
        except json.JSONDecodeError as e:
            raise SystemExit(f"{flag}: invalid JSON: {e}")
    if not isinstance(raw, dict):
        raise SystemExit(f"{flag}: expected a JSON object, got {type(raw).__name__}")
    scope = raw.get("scope")
    if scope not in (None, "") and normalize_scope(scope) is None:
        raise SystemExit(f"{flag}: 'scope' must be a string or a list of strings")
    return raw


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Manage OAuth credentials for a remote MCP server")
    parser.add_argument("server_url")
    parser.add_argument("--port", type=int, default=3334, help="OAuth callback port")
    parser.add_argument("--host", default="localhost", help="OAuth callback host")
    parser.add_argument("--resource", default="", help="resource parameter for authorization")
    parser.add_argument("--static-oauth-client-metadata", metavar="JSON|@FILE")
    parser.add_argument("--static-oauth-client-info", metavar="JSON|@FILE")
    action = parser.add_mutually_exclusive_group(required=True)
    action.add_argument("--show", action="store_true", help="print effective client metadata")
    action.add_argument("--invalidate", choices=INVALIDATION_SCOPES)
    action.add_argument("--authorize", metavar="AUTHORIZATION_URL",
                        help="open the authorization URL with the effective scope")
    return parser


def build_provider(args: argparse.Namespace, store: CredentialStore | None = None) -> RemoteOAuthClientProvider:
    options = OAuthProviderOptions(
        server_url=args.server_url,
        callback_port=args.port,
        host=args.host,
        authorize_resource=args.resource,
        static_oauth_client_metadata=_load_static_object(
            args.static_oauth_client_metadata, "--static-oauth-client-metadata"),
        static_oauth_client_info=_load_static_object(
            args.static_oauth_client_info, "--static-oauth-client-info"),
    )
    return RemoteOAuthClientProvider(options, store=store)


async def run(args: argparse.Namespace, store: CredentialStore | None = None) -> int:
    provider = build_provider(args, store=store)

    if args.invalidate:
        await provider.invalidate_credentials(args.invalidate)
        print(f"Cleared {args.invalidate} credentials for {args.server_url}")
        return 0

    # Loading registration first picks up any scope extracted from it.
    info = await provider.client_information()

    if args.authorize:
        try:
            await provider.redirect_to_authorization(args.authorize)
        except BrowserLaunchError as e:
            print(f"Open this URL to authorize:\n{e.url}")
            return 1
        return 0

    print(json.dumps({
        "server_hash": provider.server_url_hash,
        "registered": info is not None,
        "client_metadata": provider.client_metadata,
    }, indent=2))
    return 0


def _configure_logging() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    )

    # Audit logger — JSON-lines to <config dir>/audit.log
    audit_log_path = get_config_dir() / "audit.log"
    audit_log_path.parent.mkdir(parents=True, exist_ok=True)
    audit_handler = logging.FileHandler(audit_log_path)
    audit_handler.setFormatter(logging.Formatter("%(message)s"))
    audit_logger = logging.getLogger("remote-oauth-audit")
    audit_logger.addHandler(audit_handler)
    audit_logger.setLevel(logging.INFO)
    audit_logger.propagate = False


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    _configure_logging()
    return asyncio.run(run(args))


if __name__ == "__main__":
    raise SystemExit(main())
