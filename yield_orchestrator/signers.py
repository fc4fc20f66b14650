"""Signer backed by an eth-account local account.

Key material is supplied by the caller; nothing here reads or stores keys.
"""
from __future__ import annotations

from typing import Any

from eth_account import Account
from eth_account.signers.local import LocalAccount


class LocalAccountSigner:
    def __init__(self, account: LocalAccount) -> None:
        self._account = account

    @classmethod
    def from_key(cls, private_key: str) -> LocalAccountSigner:
        return cls(Account.from_key(private_key))

    @property
    def address(self) -> str:
        return self._account.address

    def sign_transaction(self, tx: dict[str, Any]) -> bytes:
        signed = self._account.sign_transaction(tx)
        return bytes(signed.raw_transaction)
