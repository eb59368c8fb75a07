"""
Core data structures for the ledger: signed transfers, block events and blocks.
"""
import enum
import time
from typing import NamedTuple, Optional

import msgpack

from zux_ledger.crypto import generate_hash, verify_signature
from zux_ledger.errors import InvalidAmount
from zux_ledger.wallet import Account, check_amount, check_currency

GENESIS_PARENT_HASH = b'\x00' * 32


class Transaction:
    """A signed transfer of one currency between two addresses."""

    def __init__(self,
                 sender: str,
                 sender_public_key: bytes,
                 recipient: str,
                 currency: str,
                 amount: float,
                 timestamp: float,
                 signature: Optional[bytes] = None):
        self.sender = sender
        self.sender_public_key = sender_public_key
        self.recipient = recipient
        self.currency = currency
        self.amount = amount
        self.timestamp = timestamp
        self.signature = signature

    @classmethod
    def create(cls, sender_account: Account, recipient: str, currency: str,
               amount: float, timestamp: Optional[float] = None) -> 'Transaction':
        """Builds and signs a transfer from sender_account."""
        amount = check_amount(amount)
        check_currency(currency)
        tx = cls(
            sender=sender_account.address,
            sender_public_key=sender_account.public_key,
            recipient=recipient,
            currency=currency,
            amount=amount,
            timestamp=time.time() if timestamp is None else float(timestamp),
        )
        tx.signature = sender_account.sign(tx.get_signing_data())
        return tx

    @classmethod
    def from_dict(cls, data: dict):
        """Creates a Transaction object from a dictionary."""
        return cls(
            sender=data["sender"],
            sender_public_key=bytes.fromhex(data["sender_public_key"]),
            recipient=data["recipient"],
            currency=data["currency"],
            amount=data["amount"],
            timestamp=data["timestamp"],
            signature=bytes.fromhex(data["signature"]) if data.get("signature") else None,
        )

    def to_dict(self, include_signature=True):
        data = {
            "sender": self.sender,
            "sender_public_key": self.sender_public_key.hex(),
            "recipient": self.recipient,
            "currency": self.currency,
            "amount": self.amount,
            "timestamp": self.timestamp,
        }
        if include_signature and self.signature:
            data["signature"] = self.signature.hex()
        return data

    def get_signing_data(self) -> bytes:
        """
        Returns the canonical byte representation for signing.

        A fixed-order msgpack array, so reordering or dropping a field yields
        different bytes.
        """
        return msgpack.packb(
            [self.sender, self.recipient, self.currency, self.amount, self.timestamp],
            use_bin_type=True,
        )

    def verify(self):
        """
        Checks amount and signature. Does not look at balances.

        Raises InvalidAmount, BadPublicKey or BadSignature.
        """
        try:
            check_amount(self.amount)
        except InvalidAmount as e:
            raise InvalidAmount(f"Transaction amount invalid: {e}") from e
        verify_signature(self.sender_public_key, self.signature, self.get_signing_data())

    @property
    def id(self) -> bytes:
        """The unique hash identifier of the transaction."""
        return generate_hash(self.get_signing_data())

    def __repr__(self) -> str:
        return (
            f"Transaction({self.sender} -> {self.recipient}: "
            f"{self.amount:.9f} {self.currency} @ {self.timestamp})"
        )


def verify_transaction(tx: Transaction):
    tx.verify()


class EventKind(enum.Enum):
    GENESIS = "Genesis"
    WALLET_CREATION = "Wallet Creation"
    TOKEN_CREDIT = "Token Credit"
    AMM_POOL_CREATION = "AMM Pool Creation"
    SWAP = "Token Swap"


class BlockEvent(NamedTuple):
    """The single event a block records, e.g. a wallet creation or a swap."""
    kind: EventKind
    args: tuple = ()

    @classmethod
    def genesis(cls):
        return cls(EventKind.GENESIS)

    @classmethod
    def wallet_creation(cls, address: str):
        return cls(EventKind.WALLET_CREATION, (address,))

    @classmethod
    def token_credit(cls, address: str, currency: str, amount: float):
        return cls(EventKind.TOKEN_CREDIT, (address, currency, float(amount)))

    @classmethod
    def amm_pool_creation(cls, address: str):
        return cls(EventKind.AMM_POOL_CREATION, (address,))

    @classmethod
    def swap(cls, address: str, base_to_quote: bool, input_amount: float, output_amount: float):
        return cls(EventKind.SWAP, (address, base_to_quote, float(input_amount), float(output_amount)))

    @property
    def block_type(self) -> str:
        return self.kind.value

    @property
    def tag(self) -> str:
        if self.kind is EventKind.GENESIS:
            return "genesis_block"
        if self.kind is EventKind.WALLET_CREATION:
            return f"wallet_creation:{self.args[0]}"
        if self.kind is EventKind.TOKEN_CREDIT:
            address, currency, amount = self.args
            return f"token_credit:{address}:{currency}:{amount:.9f}"
        if self.kind is EventKind.AMM_POOL_CREATION:
            return f"amm_pool_creation:{self.args[0]}"
        address, base_to_quote, input_amount, output_amount = self.args
        return f"swap:{address}:{str(base_to_quote).lower()}:{input_amount:.9f}:{output_amount:.9f}"


class BlockStatus(enum.Enum):
    BUILDING = "building"
    MINED = "mined"
    APPENDED = "appended"


def merkle_root(hashes: list[bytes]) -> bytes:
    """Calculate Merkle root from a list of hashes."""
    if not hashes:
        return b'\x00' * 32
    level = list(hashes)
    while len(level) > 1:
        # Pad to even number
        if len(level) % 2 == 1:
            level.append(level[-1])
        level = [generate_hash(level[i] + level[i + 1]) for i in range(0, len(level), 2)]
    return level[0]


class Block:
    def __init__(self,
                 block_id: int,
                 parent_hash: bytes,
                 transactions: list[Transaction],
                 event: BlockEvent,
                 network_name: str,
                 version: str,
                 inception_year: int,
                 block_class: str,
                 difficulty: int,
                 timestamp: Optional[float] = None,
                 nonce: Optional[int] = None,
                 block_hash: Optional[bytes] = None,
                 state_root: Optional[bytes] = None):
        self.id = block_id
        self.parent_hash = parent_hash
        self.transactions = list(transactions)
        self.event = event
        self.network_name = network_name
        self.version = version
        self.inception_year = inception_year
        self.block_class = block_class
        self.difficulty = difficulty
        self.timestamp = time.time() if timestamp is None else timestamp
        self.state_root = state_root if state_root is not None else self.calculate_state_root()
        self.nonce = nonce
        self.hash = block_hash
        self.status = BlockStatus.BUILDING if block_hash is None else BlockStatus.MINED

    def calculate_state_root(self) -> bytes:
        """Merkle root over transaction ids plus the event tag."""
        leaves = [tx.id for tx in self.transactions]
        leaves.append(generate_hash(self.event.tag.encode('utf-8')))
        return merkle_root(leaves)

    @property
    def metadata(self) -> tuple:
        return (
            self.network_name,
            self.version,
            self.inception_year,
            self.block_class,
            self.event.block_type,
            self.event.tag,
        )

    def header_prefix(self) -> bytes:
        """Fixed header bytes the nonce is appended to while mining."""
        return msgpack.packb(
            [self.id, self.parent_hash, self.state_root, self.timestamp, self.difficulty,
             *self.metadata],
            use_bin_type=True,
        )

    def calculate_hash(self, nonce: Optional[int] = None) -> bytes:
        if nonce is None:
            nonce = self.nonce
        return generate_hash(self.header_prefix() + msgpack.packb(nonce))

    def to_dict(self):
        return {
            "id": self.id,
            "parent_hash": self.parent_hash.hex(),
            "hash": self.hash.hex() if self.hash else None,
            "state_root": self.state_root.hex(),
            "timestamp": self.timestamp,
            "transactions": [tx.to_dict() for tx in self.transactions],
            "event": {"kind": self.event.kind.value, "args": list(self.event.args)},
            "network_name": self.network_name,
            "version": self.version,
            "inception_year": self.inception_year,
            "block_class": self.block_class,
            "difficulty": self.difficulty,
            "nonce": self.nonce,
        }

    def summary(self) -> dict:
        """Display-oriented view without transaction bodies."""
        return {
            "id": self.id,
            "parent_hash": self.parent_hash.hex(),
            "hash": self.hash.hex() if self.hash else None,
            "timestamp": self.timestamp,
            "transaction_count": len(self.transactions),
            "difficulty": self.difficulty,
            "nonce": self.nonce,
            "metadata": list(self.metadata),
        }

    def __repr__(self) -> str:
        digest = self.hash.hex()[:16] if self.hash else "unmined"
        return f"Block(id={self.id}, hash={digest}, txs={len(self.transactions)}, {self.status.value})"
