from typing import Protocol


class CredentialProvider(Protocol):
    def get_credential(self) -> str: ...
