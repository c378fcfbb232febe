class StreamRecorderError(Exception):
    pass


class CaptureError(StreamRecorderError):
    """Microphone unavailable, failed to initialize, or lost mid-session."""


class ConnectError(StreamRecorderError):
    """Transcription endpoint unreachable or the credential was rejected."""


class TransportError(StreamRecorderError):
    """The streaming connection broke or is not usable for sending."""


class StorageError(StreamRecorderError):
    """A file could not be opened, written, read or deleted."""


class DecodeError(StreamRecorderError):
    """An inbound server message is not a structured object."""
