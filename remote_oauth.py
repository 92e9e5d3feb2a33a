"""
remote_oauth.py — OAuth client provider for a local proxy to a remote MCP server.

Holds everything the authorization-code flow needs to know about *this*
client for one remote server:

  - Client metadata sent during dynamic registration, rebuilt on every
    access from static options and the currently known scope.
  - The registration result, lazily loaded from the credential store and
    cached in memory.
  - The scope extracted from registration, persisted beside it.
  - Tokens and the PKCE code verifier of the pending flow.

Scope precedence (see oauth_scopes): a static scope in the operator's
client metadata always wins and disables extraction entirely. Without
one, the scope echoed by registration is used, else DEFAULT_SCOPE.

The provider also implements the mcp SDK TokenStorage protocol
(get_tokens / set_tokens / get_client_info / set_client_info).
"""

import asyncio
import json
import logging
import secrets
import time
import webbrowser
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from pydantic import ValidationError

from mcp.shared.auth import OAuthClientInformationFull, OAuthClientMetadata, OAuthToken

from auth_store import CredentialStore, get_server_url_hash
from oauth_scopes import DEFAULT_SCOPE, extract_scope, normalize_scope, resolve_scope

__version__ = "0.1.0"

logger = logging.getLogger("remote-oauth")
audit_logger = logging.getLogger("remote-oauth-audit")

CLIENT_INFO_FILE = "client_info.json"
TOKENS_FILE = "tokens.json"
SCOPES_FILE = "scopes.json"
CODE_VERIFIER_FILE = "code_verifier.txt"

SOFTWARE_ID = "2e6dc280-f3c3-4e01-99a7-8181dbd1d23d"
DEFAULT_CLIENT_NAME = "MCP CLI Client"
DEFAULT_CLIENT_URI = "https://github.com/modelcontextprotocol/mcp-cli"

InvalidationScope = Literal["all", "client", "tokens", "verifier"]
INVALIDATION_SCOPES: tuple[str, ...] = ("all", "client", "tokens", "verifier")


def _audit(event: str, **kwargs: Any) -> None:
    entry = {"ts": time.time(), "event": event, **kwargs}
    audit_logger.info(json.dumps(entry))


class BrowserLaunchError(RuntimeError):
    """The browser could not be opened. `url` is still valid to show the user."""

    def __init__(self, url: str, reason: str = ""):
        self.url = url
        msg = f"Could not open browser for authorization URL: {url}"
        if reason:
            msg += f" ({reason})"
        super().__init__(msg)


class CacheState(Enum):
    UNLOADED = "unloaded"
    ABSENT = "absent"
    PRESENT = "present"


@dataclass
class _Cached:
    """A lazily loaded value; ABSENT means loaded and nothing was stored."""

    state: CacheState = CacheState.UNLOADED
    value: Any = None

    def set(self, value: Any) -> None:
        self.state = CacheState.ABSENT if value is None else CacheState.PRESENT
        self.value = value

    def reset(self) -> None:
        self.state = CacheState.UNLOADED
        self.value = None

    @property
    def loaded(self) -> bool:
        return self.state is not CacheState.UNLOADED


@dataclass(frozen=True)
class OAuthProviderOptions:
    server_url: str
    callback_port: int
    host: str = "localhost"
    callback_path: str = "/oauth/callback"
    client_name: str = DEFAULT_CLIENT_NAME
    client_uri: str = DEFAULT_CLIENT_URI
    software_id: str = SOFTWARE_ID
    software_version: str = __version__
    static_oauth_client_metadata: dict[str, Any] | None = None
    static_oauth_client_info: dict[str, Any] | None = None
    authorize_resource: str = ""
    server_url_hash: str | None = None
    headers: dict[str, str] = field(default_factory=dict)


class RemoteOAuthClientProvider:
    """Client credentials and scope for one remote server.

    One coordinating flow per instance; no locking.
    """

    def __init__(
        self,
        options: OAuthProviderOptions,
        store: CredentialStore | None = None,
        open_browser: Callable[[str], bool] = webbrowser.open,
    ):
        self.options = options
        self.store = store if store is not None else CredentialStore()
        self.open_browser = open_browser
        self.server_url_hash = options.server_url_hash or get_server_url_hash(
            options.server_url, options.authorize_resource, options.headers,
        )
        self._client_info = _Cached()
        self._extracted_scope = _Cached()

    # --- Client metadata ---

    def _static_scope(self) -> str | None:
        static = self.options.static_oauth_client_metadata or {}
        return normalize_scope(static.get("scope"))

    @property
    def redirect_url(self) -> str:
        o = self.options
        return f"http://{o.host}:{o.callback_port}{o.callback_path}"

    @property
    def client_metadata(self) -> dict[str, Any]:
        """Registration metadata with the effective scope; never triggers I/O."""
        o = self.options
        metadata: dict[str, Any] = {
            "redirect_uris": [self.redirect_url],
            "token_endpoint_auth_method": "none",
            "grant_types": ["authorization_code", "refresh_token"],
            "response_types": ["code"],
            "client_name": o.client_name,
            "client_uri": o.client_uri,
            "software_id": o.software_id,
            "software_version": o.software_version,
        }
        metadata.update(o.static_oauth_client_metadata or {})

        static_scope = self._static_scope()
        extracted = None if static_scope else self._extracted_scope.value
        metadata["scope"] = resolve_scope(static_scope, extracted, DEFAULT_SCOPE)
        return metadata

    def client_metadata_model(self) -> OAuthClientMetadata:
        return OAuthClientMetadata.model_validate(self.client_metadata)

    # --- Client information ---

    async def client_information(self) -> dict[str, Any] | None:
        """Registration result for this server, or None if not registered.

        Loads the extracted scope alongside it unless a static scope is set.
        """
        if self.options.static_oauth_client_info:
            return self.options.static_oauth_client_info
        if self._client_info.loaded:
            return self._client_info.value

        info = await self.store.read_json(self.server_url_hash, CLIENT_INFO_FILE)
        if info is not None and not isinstance(info, dict):
            logger.warning("ignoring malformed %s for %s", CLIENT_INFO_FILE, self.server_url_hash)
            info = None
        if info is None or self._static_scope():
            self._client_info.set(info)
            return info

        # Registration is cached only once its scope is known, so a failed
        # scope read is retried on the next call.
        record = await self.store.read_json(self.server_url_hash, SCOPES_FILE)
        scope = record.get("scopes") if isinstance(record, dict) else None
        if not (isinstance(scope, str) and scope):
            if record is not None:
                logger.warning("ignoring malformed %s for %s", SCOPES_FILE, self.server_url_hash)
            scope = None
        self._extracted_scope.set(scope)
        self._client_info.set(info)
        return info

    async def save_client_information(self, client_information: dict[str, Any]) -> None:
        """Persist a registration result and, without a static scope, its scope."""
        # A failed write leaves both caches unloaded so the next read goes
        # to the store instead of pairing the new registration with an old scope.
        self._client_info.reset()
        await self.store.write_json(self.server_url_hash, CLIENT_INFO_FILE, client_information)
        _audit("client_registered", server=self.server_url_hash,
               client_id=client_information.get("client_id"))

        if self._static_scope():
            self._client_info.set(client_information)
            return

        self._extracted_scope.reset()
        scope = extract_scope(client_information)
        if scope is None:
            logger.info("registration carried no scope, using default: %s", DEFAULT_SCOPE)
            scope = DEFAULT_SCOPE
        else:
            logger.info("using scope from registration: %s", scope)
        await self.store.write_json(self.server_url_hash, SCOPES_FILE, {"scopes": scope})
        self._extracted_scope.set(scope)
        self._client_info.set(client_information)

    # --- Tokens and PKCE ---

    async def tokens(self) -> OAuthToken | None:
        data = await self.store.read_json(self.server_url_hash, TOKENS_FILE)
        if data is None:
            return None
        try:
            return OAuthToken.model_validate(data)
        except ValidationError as e:
            logger.warning("ignoring malformed %s for %s: %s", TOKENS_FILE, self.server_url_hash, e)
            return None

    async def save_tokens(self, tokens: OAuthToken) -> None:
        await self.store.write_json(
            self.server_url_hash, TOKENS_FILE, tokens.model_dump(mode="json", exclude_none=True),
        )

    async def code_verifier(self) -> str:
        verifier = await self.store.read_text(self.server_url_hash, CODE_VERIFIER_FILE)
        if not verifier:
            raise LookupError("No code verifier saved for this server")
        return verifier

    async def save_code_verifier(self, code_verifier: str) -> None:
        await self.store.write_text(self.server_url_hash, CODE_VERIFIER_FILE, code_verifier)

    def state(self) -> str:
        return secrets.token_urlsafe(32)

    # --- Invalidation ---

    async def invalidate_credentials(self, scope: InvalidationScope) -> None:
        """Delete persisted credentials.

        tokens  : tokens only; registration and scope are kept.
        client  : registration and extracted scope.
        verifier: the pending PKCE verifier.
        all     : everything above.
        """
        if scope not in INVALIDATION_SCOPES:
            raise ValueError(
                f"Unknown invalidation scope {scope!r}. "
                f"Valid options: {', '.join(INVALIDATION_SCOPES)}"
            )

        names: list[str] = []
        if scope in ("all", "client"):
            names += [CLIENT_INFO_FILE, SCOPES_FILE]
        if scope in ("all", "tokens"):
            names.append(TOKENS_FILE)
        if scope in ("all", "verifier"):
            names.append(CODE_VERIFIER_FILE)

        for name in names:
            await self.store.delete(self.server_url_hash, name)

        if scope in ("all", "client"):
            self._client_info.reset()
            self._extracted_scope.reset()

        _audit("credentials_invalidated", server=self.server_url_hash, scope=scope, files=names)
        logger.info("invalidated %s credentials for %s", scope, self.options.server_url)

    # --- Authorization redirect ---

    def authorization_url(self, authorization_url: str) -> str:
        """Return `authorization_url` with the effective scope (and resource) set."""
        parts = urlsplit(str(authorization_url))
        replaced = {"scope"}
        if self.options.authorize_resource:
            replaced.add("resource")
        params = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True)
                  if k not in replaced]
        params.append(("scope", self.client_metadata["scope"]))
        if self.options.authorize_resource:
            params.append(("resource", self.options.authorize_resource))
        return urlunsplit(parts._replace(query=urlencode(params)))

    async def redirect_to_authorization(self, authorization_url: str) -> str:
        url = self.authorization_url(authorization_url)
        logger.info("Please authorize this client by visiting: %s", url)
        try:
            opened = await asyncio.to_thread(self.open_browser, url)
        except webbrowser.Error as e:
            raise BrowserLaunchError(url, str(e)) from e
        if opened is False:
            raise BrowserLaunchError(url, "no usable browser found")
        logger.info("browser opened for authorization")
        return url

    # --- mcp TokenStorage protocol ---

    async def get_tokens(self) -> OAuthToken | None:
        return await self.tokens()

    async def set_tokens(self, tokens: OAuthToken) -> None:
        await self.save_tokens(tokens)

    async def get_client_info(self) -> OAuthClientInformationFull | None:
        info = await self.client_information()
        if info is None:
            return None
        try:
            return OAuthClientInformationFull.model_validate(info)
        except ValidationError as e:
            logger.warning("stored client info is not a valid registration: %s", e)
            return None

    async def set_client_info(self, client_info: OAuthClientInformationFull) -> None:
        await self.save_client_information(
            client_info.model_dump(mode="json", exclude_none=True),
        )
