"""Signer protocol — key custody stays outside the orchestrator."""
from typing import Any, Protocol


class Signer(Protocol):
    @property
    def address(self) -> str: ...

    def sign_transaction(self, tx: dict[str, Any]) -> bytes:
        """Return the raw signed transaction bytes."""
        ...
