import logging
import shutil
import tempfile
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import urlsplit

from stream_recorder.config import RecorderConfig
from stream_recorder.factory import create_credentials
from stream_recorder.errors import ConnectError

logger = logging.getLogger(__name__)

CRITICAL_CHECKS = {"audio_device", "credential", "storage_dir", "endpoint_url"}


@dataclass
class HealthCheckResult:
    name: str
    passed: bool
    detail: str


def run_startup_checks(config: RecorderConfig) -> list[HealthCheckResult]:
    results = [
        _check_audio_device(config),
        _check_credential(config),
        _check_storage_dir(config),
        _check_endpoint_url(config),
    ]

    passed = sum(1 for r in results if r.passed)
    logger.info("Health check: %d/%d passed", passed, len(results))
    for result in results:
        level = logging.INFO if result.passed else logging.WARNING
        symbol = "OK" if result.passed else "FAIL"
        logger.log(level, "  [%s] %s: %s", symbol, result.name, result.detail)

    return results


def has_critical_failures(results: list[HealthCheckResult]) -> bool:
    return any(not r.passed and r.name in CRITICAL_CHECKS for r in results)


def _check_audio_device(config: RecorderConfig) -> HealthCheckResult:
    name = "audio_device"
    try:
        import sounddevice as sd
    except (ImportError, OSError) as exc:
        return HealthCheckResult(name=name, passed=False, detail=f"sounddevice unavailable: {exc}")

    try:
        if config.capture_device:
            for dev in sd.query_devices():
                if config.capture_device.lower() in dev["name"].lower() and dev["max_input_channels"] > 0:
                    return HealthCheckResult(name=name, passed=True, detail=f"Device '{dev['name']}' found")
            return HealthCheckResult(
                name=name, passed=False, detail=f"No input device matching '{config.capture_device}'",
            )
        default = sd.query_devices(kind="input")
        return HealthCheckResult(name=name, passed=True, detail=f"Default input: {default['name']}")
    except sd.PortAudioError as exc:
        return HealthCheckResult(name=name, passed=False, detail=str(exc))


def _check_credential(config: RecorderConfig) -> HealthCheckResult:
    name = "credential"
    try:
        create_credentials(config).get_credential()
    except ConnectError as exc:
        return HealthCheckResult(name=name, passed=False, detail=str(exc))
    source = config.credential_file or f"${config.credential_env}"
    return HealthCheckResult(name=name, passed=True, detail=f"Credential loaded from {source}")


def _check_storage_dir(config: RecorderConfig) -> HealthCheckResult:
    name = "storage_dir"
    storage_dir = Path(config.storage_dir).expanduser()
    try:
        storage_dir.mkdir(parents=True, exist_ok=True)
        with tempfile.NamedTemporaryFile(dir=storage_dir):
            pass
    except OSError as exc:
        return HealthCheckResult(name=name, passed=False, detail=f"{storage_dir} not writable: {exc}")
    free_mb = _free_megabytes(storage_dir)
    return HealthCheckResult(name=name, passed=True, detail=f"{storage_dir} writable ({free_mb} MB free)")


def _check_endpoint_url(config: RecorderConfig) -> HealthCheckResult:
    name = "endpoint_url"
    parts = urlsplit(config.endpoint_url)
    if parts.scheme not in ("ws", "wss") or not parts.netloc:
        return HealthCheckResult(
            name=name, passed=False, detail=f"'{config.endpoint_url}' is not a ws:// or wss:// URL",
        )
    return HealthCheckResult(name=name, passed=True, detail=config.endpoint_url)


def _free_megabytes(path: Path) -> int:
    return shutil.disk_usage(path).free // (1024 * 1024)
