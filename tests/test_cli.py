from __future__ import annotations

from unittest.mock import AsyncMock, patch

from conftest import make_provider_config

from oidc_rp import cli
from oidc_rp.api.services.discovery import ProviderConfigResolver
from oidc_rp.errors import ConfigError


def test_load_dotenv_does_not_override(tmp_path, monkeypatch):
    env_file = tmp_path / ".env"
    env_file.write_text(
        "# comment\nexport OIDC_REALM='demo'\nOIDC_CLIENT_ID=from-file\n",
        encoding="utf-8",
    )
    monkeypatch.setenv("OIDC_CLIENT_ID", "from-env")
    monkeypatch.delenv("OIDC_REALM", raising=False)

    loaded = cli._load_dotenv(env_file)

    assert loaded == 1
    assert cli.os.environ["OIDC_REALM"] == "demo"
    assert cli.os.environ["OIDC_CLIENT_ID"] == "from-env"


def test_parse_env_line_edge_cases():
    assert cli._parse_env_line("  # note") is None
    assert cli._parse_env_line("NO_EQUALS") is None
    assert cli._parse_env_line("=value") is None
    assert cli._parse_env_line("A=b=c") == ("A", "b=c")
    assert cli._parse_env_line('export B="quoted value"') == ("B", "quoted value")


def test_no_command_prints_help(monkeypatch):
    monkeypatch.setenv("DISABLE_DOTENV", "1")

    assert cli.main([]) == 2


def test_check_config_prints_endpoints(monkeypatch, capsys):
    monkeypatch.setenv("DISABLE_DOTENV", "1")
    config = make_provider_config()

    with patch.object(
        ProviderConfigResolver, "resolve", new=AsyncMock(return_value=config)
    ):
        code = cli.main(["check-config"])

    assert code == 0
    out = capsys.readouterr().out
    assert config.endpoints.token in out
    assert "pkce:            on" in out


def test_check_config_reports_config_error(monkeypatch):
    monkeypatch.setenv("DISABLE_DOTENV", "1")

    with patch.object(
        ProviderConfigResolver,
        "resolve",
        new=AsyncMock(side_effect=ConfigError("OIDC client_id is required")),
    ):
        assert cli.main(["check-config"]) == 1


def test_serve_runs_uvicorn(monkeypatch):
    monkeypatch.setenv("DISABLE_DOTENV", "1")
    monkeypatch.delenv("HOST", raising=False)

    with patch("uvicorn.run") as run:
        code = cli.main(["--log-level", "debug", "serve", "--port", "9000"])

    assert code == 0
    run.assert_called_once_with(
        "oidc_rp.api.main:app", host="127.0.0.1", port=9000, log_level="debug"
    )
