import pytest

from stream_recorder.adapters.secret_credentials import SecretCredentials
from stream_recorder.errors import ConnectError


class TestSecretCredentials:
    def test_file_takes_precedence(self, tmp_path, monkeypatch):
        secret = tmp_path / "key"
        secret.write_text("  file-key\n")
        monkeypatch.setenv("TEST_RECORDER_KEY", "env-key")
        assert SecretCredentials(str(secret), "TEST_RECORDER_KEY").get_credential() == "file-key"

    def test_falls_back_to_env(self, tmp_path, monkeypatch):
        monkeypatch.setenv("TEST_RECORDER_KEY", "env-key")
        credentials = SecretCredentials(str(tmp_path / "missing"), "TEST_RECORDER_KEY")
        assert credentials.get_credential() == "env-key"

    def test_empty_file_falls_back_to_env(self, tmp_path, monkeypatch):
        secret = tmp_path / "key"
        secret.write_text("\n")
        monkeypatch.setenv("TEST_RECORDER_KEY", "env-key")
        assert SecretCredentials(str(secret), "TEST_RECORDER_KEY").get_credential() == "env-key"

    def test_nothing_configured(self, monkeypatch):
        monkeypatch.delenv("TEST_RECORDER_KEY", raising=False)
        with pytest.raises(ConnectError):
            SecretCredentials("", "TEST_RECORDER_KEY").get_credential()

    def test_unreadable_path(self, tmp_path):
        with pytest.raises(ConnectError):
            SecretCredentials(str(tmp_path)).get_credential()
