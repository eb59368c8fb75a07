"""
In-memory wallet accounts holding an Ed25519 key pair and per-currency balances.
"""
import logging
import math
from typing import Optional

import nacl.signing

from zux_ledger.crypto import generate_keypair, sign
from zux_ledger.errors import InsufficientBalance, InvalidAmount, UnsupportedCurrency
from zux_ledger.identity import AddressGenerator

logger = logging.getLogger(__name__)

BASE_CURRENCY = "ZUX"
QUOTE_CURRENCY = "USDZ"
SUPPORTED_CURRENCIES = (BASE_CURRENCY, QUOTE_CURRENCY)

SYSTEM_WALLET_ADDRESS = "SYSTEM"


def check_currency(currency: str):
    if currency not in SUPPORTED_CURRENCIES:
        raise UnsupportedCurrency(f"Unsupported currency: {currency}")


def check_amount(amount) -> float:
    """Returns amount as float, raising InvalidAmount unless finite and > 0."""
    if isinstance(amount, bool) or not isinstance(amount, (int, float)):
        raise InvalidAmount(f"Amount must be a number, got {type(amount).__name__}")
    amount = float(amount)
    if not math.isfinite(amount) or amount <= 0:
        raise InvalidAmount(f"Amount must be finite and greater than zero, got {amount}")
    return amount


class Account:
    """
    A wallet. The signing key stays inside the account: it is used through
    sign() and never exported by to_dict()/snapshot() or shown in repr().
    """

    def __init__(self, signing_key: nacl.signing.SigningKey, address: str,
                 strategy=None):
        self._signing_key = signing_key
        self.public_key = bytes(signing_key.verify_key)
        self.address = address
        self.balances = {currency: 0.0 for currency in SUPPORTED_CURRENCIES}
        self.strategy = strategy
        self.trade_count = 0

    @classmethod
    def create(cls, generator: AddressGenerator, address: Optional[str] = None) -> 'Account':
        """Creates an account with a fresh key pair and an issued (or given) address."""
        signing_key, _ = generate_keypair()
        if address is None:
            address = generator.next_address()
        else:
            generator.reserve(address)
        return cls(signing_key, address)

    def sign(self, data: bytes) -> bytes:
        return sign(self._signing_key, data)

    def get_balance(self, currency: str) -> float:
        return self.balances.get(currency, 0.0)

    def credit(self, currency: str, amount: float):
        check_currency(currency)
        amount = check_amount(amount)
        self.balances[currency] = self.get_balance(currency) + amount

    def debit(self, currency: str, amount: float):
        check_currency(currency)
        amount = check_amount(amount)
        current = self.get_balance(currency)
        if current < amount:
            raise InsufficientBalance(
                f"Insufficient balance for wallet {self.address}: "
                f"has {current:.9f} {currency}, needs {amount:.9f} {currency}"
            )
        self.balances[currency] = current - amount

    @property
    def tier(self) -> str:
        if self.strategy is None:
            return "none"
        return self.strategy.tier.value

    def total_value(self, price: float) -> float:
        """Holdings valued in the quote currency at the given base price."""
        return self.get_balance(QUOTE_CURRENCY) + self.get_balance(BASE_CURRENCY) * price

    def snapshot(self, price: Optional[float] = None) -> dict:
        data = {
            "address": self.address,
            "public_key": self.public_key.hex(),
            "balances": dict(self.balances),
            "tier": self.tier,
            "trade_count": self.trade_count,
        }
        if price is not None:
            data["total_value"] = self.total_value(price)
        return data

    def __repr__(self) -> str:
        return (
            f"Account(address={self.address}, "
            f"{BASE_CURRENCY}={self.get_balance(BASE_CURRENCY):.9f}, "
            f"{QUOTE_CURRENCY}={self.get_balance(QUOTE_CURRENCY):.9f}, "
            f"tier={self.tier})"
        )
