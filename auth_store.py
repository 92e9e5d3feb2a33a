"""
auth_store.py — per-server credential files for remote OAuth clients.

Every remote server gets its own set of files, prefixed with a hash of the
server URL, inside a single config directory:

  ~/.mcp-auth/<hash>_client_info.json   dynamic client registration
  ~/.mcp-auth/<hash>_tokens.json        access / refresh tokens
  ~/.mcp-auth/<hash>_scopes.json        scope extracted from registration
  ~/.mcp-auth/<hash>_code_verifier.txt  PKCE verifier of the pending flow

The directory can be moved with MCP_REMOTE_CONFIG_DIR. Files are written
owner-only (0600). Entries are independent; nothing here is transactional
across files.
"""

import asyncio
import hashlib
import json
import logging
import os
import stat
import tempfile
from pathlib import Path
from typing import Any

logger = logging.getLogger("remote-oauth")

CONFIG_DIR_ENV = "MCP_REMOTE_CONFIG_DIR"


def get_config_dir() -> Path:
    env_dir = os.environ.get(CONFIG_DIR_ENV)
    if env_dir:
        return Path(env_dir).expanduser()
    return Path.home() / ".mcp-auth"


def get_server_url_hash(
    server_url: str,
    authorize_resource: str = "",
    headers: dict[str, str] | None = None,
) -> str:
    """Stable identity for a server's credentials.

    The resource and custom headers are folded in so that the same URL
    used with different credentials does not share files.
    """
    parts = [server_url]
    if authorize_resource:
        parts.append(authorize_resource)
    if headers:
        parts.append(json.dumps(dict(sorted(headers.items())), separators=(",", ":")))
    return hashlib.md5("|".join(parts).encode()).hexdigest()


class CredentialStore:
    """Async read/write/delete of named blobs, keyed by server hash."""

    def __init__(self, config_dir: Path | str | None = None):
        self.config_dir = Path(config_dir) if config_dir is not None else get_config_dir()

    def path_for(self, server_hash: str, name: str) -> Path:
        return self.config_dir / f"{server_hash}_{name}"

    # --- JSON blobs ---

    async def read_json(self, server_hash: str, name: str) -> Any | None:
        """Return the decoded value, or None if missing or undecodable."""
        text = await self.read_text(server_hash, name)
        if text is None:
            return None
        try:
            return json.loads(text)
        except json.JSONDecodeError as e:
            logger.warning("ignoring unreadable %s for %s: %s", name, server_hash, e)
            return None

    async def write_json(self, server_hash: str, name: str, value: Any) -> None:
        await self.write_text(server_hash, name, json.dumps(value, indent=2))

    # --- Text blobs ---

    async def read_text(self, server_hash: str, name: str) -> str | None:
        path = self.path_for(server_hash, name)
        try:
            return await asyncio.to_thread(path.read_text)
        except FileNotFoundError:
            return None

    async def write_text(self, server_hash: str, name: str, text: str) -> None:
        await asyncio.to_thread(self._write_file, self.path_for(server_hash, name), text)
        logger.debug("wrote %s for %s", name, server_hash)

    async def delete(self, server_hash: str, name: str) -> None:
        path = self.path_for(server_hash, name)
        await asyncio.to_thread(path.unlink, missing_ok=True)
        logger.debug("deleted %s for %s", name, server_hash)

    # --- Internal ---

    def _write_file(self, path: Path, text: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.")
        try:
            with os.fdopen(fd, "w") as f:
                f.write(text)
            os.chmod(tmp_name, stat.S_IRUSR | stat.S_IWUSR)
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
