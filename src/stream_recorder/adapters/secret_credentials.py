import logging
import os
from pathlib import Path

from stream_recorder.errors import ConnectError

logger = logging.getLogger(__name__)


class SecretCredentials:
    """Reads the API credential from a secret file, falling back to an env var."""

    def __init__(self, secret_file: str = "", env_var: str = "") -> None:
        self._secret_file = secret_file
        self._env_var = env_var

    def get_credential(self) -> str:
        credential = self._read_file() or self._read_env()
        if not credential:
            raise ConnectError("No transcription credential configured")
        return credential

    def _read_file(self) -> str:
        if not self._secret_file:
            return ""
        try:
            return Path(self._secret_file).read_text().strip()
        except FileNotFoundError:
            logger.warning("Credential file %s not found", self._secret_file)
            return ""
        except OSError as exc:
            raise ConnectError(f"Cannot read credential file {self._secret_file}: {exc}") from exc

    def _read_env(self) -> str:
        if not self._env_var:
            return ""
        return os.environ.get(self._env_var, "").strip()
