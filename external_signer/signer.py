"""Hot wallet used to sign outgoing XRP payments."""
from __future__ import annotations

from dataclasses import dataclass

from xrpl.models.transactions import Transaction
from xrpl.transaction import sign
from xrpl.wallet import Wallet


class SignerError(RuntimeError):
    pass


@dataclass(frozen=True)
class HotWallet:
    wallet: Wallet

    @classmethod
    def from_seed(cls, seed: str) -> "HotWallet":
        try:
            return cls(Wallet.from_seed(seed))
        except Exception as exc:
            raise SignerError(f"Invalid hot wallet seed: {exc}") from exc

    @property
    def address(self) -> str:
        return self.wallet.classic_address

    def sign(self, transaction: Transaction) -> Transaction:
        return sign(transaction, self.wallet)
