"""Unit tests for loading the mailbox owner's OAuth credentials."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest

from inboxq.errors import ConfigurationError
from inboxq.gmail import oauth


@pytest.fixture
def paths(tmp_path, monkeypatch):
    secrets = tmp_path / "credentials.json"
    token = tmp_path / "creds" / "token.json"
    monkeypatch.setenv("GOOGLE_OAUTH_CLIENT_SECRETS", str(secrets))
    monkeypatch.setenv("GOOGLE_OAUTH_TOKEN_FILE", str(token))
    return secrets, token


class TestLoadCredentials:
    def test_valid_token_is_returned(self, paths):
        _, token = paths
        token.parent.mkdir()
        token.write_text("{}", encoding="utf-8")
        creds = MagicMock(valid=True)

        with patch.object(oauth.Credentials, "from_authorized_user_file", return_value=creds) as load:
            assert oauth.load_credentials() is creds

        load.assert_called_once_with(str(token), oauth.SCOPES)

    def test_expired_token_is_refreshed_and_saved(self, paths):
        _, token = paths
        token.parent.mkdir()
        token.write_text("{}", encoding="utf-8")
        creds = MagicMock(valid=False, expired=True, refresh_token="refresh")
        creds.to_json.return_value = '{"token": "new"}'

        with patch.object(oauth.Credentials, "from_authorized_user_file", return_value=creds):
            assert oauth.load_credentials() is creds

        creds.refresh.assert_called_once()
        assert token.read_text(encoding="utf-8") == '{"token": "new"}'

    def test_missing_token_non_interactive_names_setting(self, paths):
        with pytest.raises(ConfigurationError) as exc_info:
            oauth.load_credentials()
        assert exc_info.value.key == "GOOGLE_OAUTH_TOKEN_FILE"

    def test_interactive_needs_client_secrets(self, paths):
        with pytest.raises(ConfigurationError) as exc_info:
            oauth.load_credentials(interactive=True)
        assert exc_info.value.key == "GOOGLE_OAUTH_CLIENT_SECRETS"

    def test_interactive_flow_stores_token(self, paths):
        secrets, token = paths
        secrets.write_text("{}", encoding="utf-8")
        creds = MagicMock()
        creds.to_json.return_value = '{"token": "fresh"}'
        flow = MagicMock()
        flow.run_local_server.return_value = creds

        with patch.object(oauth.InstalledAppFlow, "from_client_secrets_file", return_value=flow):
            assert oauth.load_credentials(interactive=True) is creds

        assert token.read_text(encoding="utf-8") == '{"token": "fresh"}'


class TestSetupCommand:
    def test_reports_missing_client_secrets(self, paths, capsys):
        assert oauth.main() == 1
        assert "OAuth client secrets not found" in capsys.readouterr().out

    def test_runs_consent_and_checks_connection(self, paths, capsys):
        secrets, _ = paths
        secrets.write_text("{}", encoding="utf-8")
        service = MagicMock()
        service.users.return_value.getProfile.return_value.execute.return_value = {
            "emailAddress": "owner@example.com"
        }

        with (
            patch.object(oauth, "load_credentials", return_value=MagicMock()) as load,
            patch("inboxq.gmail.mailbox.build_gmail_service", return_value=service),
        ):
            assert oauth.main() == 0

        load.assert_called_once_with(interactive=True)
        assert "owner@example.com" in capsys.readouterr().out

    def test_consent_failure_exit_code(self, paths):
        secrets, _ = paths
        secrets.write_text("{}", encoding="utf-8")

        with patch.object(
            oauth, "load_credentials", side_effect=ConfigurationError("GOOGLE_OAUTH_TOKEN_FILE", "denied")
        ):
            assert oauth.main() == 1
