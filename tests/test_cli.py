"""Tests for remote_auth_cli.py."""
import json
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from auth_store import CredentialStore, get_server_url_hash
from remote_auth_cli import _load_static_object, build_parser, build_provider, run

SERVER = "https://mcp.example.com/sse"


@pytest.fixture
def store(tmp_path):
    return CredentialStore(tmp_path)


# ---------------------------------------------------------------------------
# Static metadata loading
# ---------------------------------------------------------------------------

class TestLoadStaticObject:
    def test_none(self):
        assert _load_static_object(None, "--flag") is None

    def test_inline_json(self):
        assert _load_static_object('{"scope": "a b"}', "--flag") == {"scope": "a b"}

    def test_yaml_file(self, tmp_path):
        path = tmp_path / "meta.yaml"
        path.write_text("scope: github read:user\nclient_name: Custom\n")
        assert _load_static_object(f"@{path}", "--flag") == {
            "scope": "github read:user",
            "client_name": "Custom",
        }

    def test_json_file(self, tmp_path):
        path = tmp_path / "meta.json"
        path.write_text('{"client_id": "static"}')
        assert _load_static_object(f"@{path}", "--flag") == {"client_id": "static"}

    def test_missing_file(self, tmp_path):
        with pytest.raises(SystemExit, match="file not found"):
            _load_static_object(f"@{tmp_path / 'nope.yaml'}", "--flag")

    def test_invalid_json(self):
        with pytest.raises(SystemExit, match="invalid JSON"):
            _load_static_object("{scope", "--flag")

    def test_non_object(self):
        with pytest.raises(SystemExit, match="expected a JSON object"):
            _load_static_object('["a"]', "--flag")

    def test_invalid_yaml_file(self, tmp_path):
        path = tmp_path / "meta.yaml"
        path.write_text("scope: [unclosed\n")
        with pytest.raises(SystemExit, match="invalid YAML/JSON"):
            _load_static_object(f"@{path}", "--flag")

    def test_yaml_list_scope_accepted(self, tmp_path, store):
        path = tmp_path / "meta.yaml"
        path.write_text("scope: [github, read:user]\n")
        args = build_parser().parse_args([SERVER, "--show", "--static-oauth-client-metadata", f"@{path}"])
        assert build_provider(args, store=store).client_metadata["scope"] == "github read:user"

    @pytest.mark.parametrize("value", ['{"scope": 42}', '{"scope": ["a", 1]}', '{"scope": {"a": "b"}}'])
    def test_bad_scope_type_rejected(self, value):
        with pytest.raises(SystemExit, match="'scope' must be a string"):
            _load_static_object(value, "--flag")


# ---------------------------------------------------------------------------
# Argument parsing
# ---------------------------------------------------------------------------

class TestParser:
    def test_action_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([SERVER])

    def test_invalidate_choices(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([SERVER, "--invalidate", "bogus"])

    def test_provider_from_args(self, store):
        args = build_parser().parse_args([
            SERVER, "--port", "9999", "--show",
            "--static-oauth-client-metadata", '{"scope": "custom"}',
        ])
        provider = build_provider(args, store=store)
        assert provider.redirect_url == "http://localhost:9999/oauth/callback"
        assert provider.client_metadata["scope"] == "custom"
        assert provider.server_url_hash == get_server_url_hash(SERVER)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

class TestRun:
    @pytest.mark.asyncio
    async def test_show_uses_stored_scope(self, store, capsys):
        server_hash = get_server_url_hash(SERVER)
        await store.write_json(server_hash, "client_info.json", {"client_id": "c"})
        await store.write_json(server_hash, "scopes.json", {"scopes": "stored scope"})

        code = await run(build_parser().parse_args([SERVER, "--show"]), store=store)

        out = json.loads(capsys.readouterr().out)
        assert code == 0
        assert out["registered"] is True
        assert out["client_metadata"]["scope"] == "stored scope"

    @pytest.mark.asyncio
    async def test_invalidate_client(self, store, capsys):
        server_hash = get_server_url_hash(SERVER)
        await store.write_json(server_hash, "client_info.json", {"client_id": "c"})
        await store.write_json(server_hash, "scopes.json", {"scopes": "stored scope"})
        await store.write_json(server_hash, "tokens.json", {"access_token": "t"})

        code = await run(build_parser().parse_args([SERVER, "--invalidate", "client"]), store=store)

        assert code == 0
        assert "Cleared client credentials" in capsys.readouterr().out
        assert await store.read_json(server_hash, "client_info.json") is None
        assert await store.read_json(server_hash, "scopes.json") is None
        assert await store.read_json(server_hash, "tokens.json") == {"access_token": "t"}
