"""
An in-memory proof-of-work blockchain.

Single-writer model: blocks are mined against the tip observed when mining
started and appended only if that tip is still current. All mutation of the
block sequence and account balances happens under the chain lock.
"""
import logging
import threading
import time
from concurrent.futures import Executor
from typing import Optional

from zux_ledger.amm import AMM_POOL_ADDRESS, AmmPool, SwapDirection
from zux_ledger.core import (
    GENESIS_PARENT_HASH,
    Block,
    BlockEvent,
    BlockStatus,
    Transaction,
)
from zux_ledger.errors import (
    BadSignature,
    ChainLinkError,
    InsufficientBalance,
    InvalidProofOfWork,
    MiningCancelled,
    UnknownAccount,
    ValidationError,
)
from zux_ledger.pow import meets_difficulty, search_nonce
from zux_ledger.wallet import Account, check_amount, check_currency

logger = logging.getLogger(__name__)

# Blockchain constants
NETWORK_NAME = "ZUX-Testnet"
BLOCK_VERSION = "1.0.0.0.0"
INCEPTION_YEAR = 2025
DEFAULT_DIFFICULTY = 2
GENESIS_DIFFICULTY = 1


def block_class_for(network_name: str) -> str:
    return "Private" if network_name == NETWORK_NAME else "Public"


class Blockchain:
    def __init__(self,
                 network_name: str = NETWORK_NAME,
                 version: str = BLOCK_VERSION,
                 inception_year: int = INCEPTION_YEAR,
                 difficulty: int = DEFAULT_DIFFICULTY,
                 genesis_difficulty: int = GENESIS_DIFFICULTY,
                 monitor=None):
        self.network_name = network_name
        self.version = version
        self.inception_year = inception_year
        self.block_class = block_class_for(network_name)
        self.difficulty = difficulty
        self.genesis_difficulty = genesis_difficulty
        self.monitor = monitor

        self.lock = threading.RLock()
        self.blocks: list[Block] = []
        self.accounts: dict[str, Account] = {}
        self.pool_custody = {}
        self.total_transactions = 0

    # ==========================================================================
    # CHAIN ACCESS
    # ==========================================================================

    @property
    def height(self) -> int:
        return len(self.blocks)

    def get_latest_block(self) -> Optional[Block]:
        """Returns the most recent block."""
        with self.lock:
            return self.blocks[-1] if self.blocks else None

    @property
    def tip_hash(self) -> bytes:
        with self.lock:
            return self.blocks[-1].hash if self.blocks else GENESIS_PARENT_HASH

    def get_block(self, block_id: int) -> Optional[Block]:
        with self.lock:
            if 1 <= block_id <= len(self.blocks):
                return self.blocks[block_id - 1]
            return None

    def expected_difficulty(self, block_id: int) -> int:
        return self.genesis_difficulty if block_id == 1 else self.difficulty

    # ==========================================================================
    # ACCOUNT MANAGEMENT
    # ==========================================================================

    def register_account(self, account: Account):
        with self.lock:
            if account.address in self.accounts:
                raise ValidationError(f"Duplicate account address {account.address}")
            self.accounts[account.address] = account

    def get_account(self, address: str) -> Account:
        account = self.accounts.get(address)
        if account is None:
            raise UnknownAccount(f"Unknown account: {address}")
        return account

    # ==========================================================================
    # BLOCK CREATION
    # ==========================================================================

    def build_candidate(self, transactions: list[Transaction], event: BlockEvent) -> Block:
        """Creates an unmined block on top of the current tip."""
        with self.lock:
            parent = self.get_latest_block()
            block_id = parent.id + 1 if parent else 1
            parent_hash = parent.hash if parent else GENESIS_PARENT_HASH
            timestamp = time.time()
            if parent and timestamp < parent.timestamp:
                timestamp = parent.timestamp
        return Block(
            block_id=block_id,
            parent_hash=parent_hash,
            transactions=transactions,
            event=event,
            network_name=self.network_name,
            version=self.version,
            inception_year=self.inception_year,
            block_class=self.block_class,
            difficulty=self.expected_difficulty(block_id),
            timestamp=timestamp,
        )

    def mine(self, block: Block, cancel: Optional[threading.Event] = None) -> tuple[bytes, int]:
        """
        Runs the nonce search for a candidate and marks it mined.

        Does not touch chain state, so it may run on a worker thread.
        """
        if block.status is not BlockStatus.BUILDING:
            raise ValidationError(f"Block {block.id} is already {block.status.value}")
        start = time.time()
        block_hash, nonce = search_nonce(block.header_prefix(), block.difficulty, cancel=cancel)
        block.hash = block_hash
        block.nonce = nonce
        block.status = BlockStatus.MINED
        if self.monitor:
            self.monitor.record_block(time.time() - start)
        logger.debug(f"Mined block {block.id} with nonce {nonce}: {block_hash.hex()[:16]}")
        return block_hash, nonce

    def append(self, block: Block):
        """
        Appends a mined block to the tip.

        Raises ChainLinkError if the block does not extend the current tip,
        InvalidProofOfWork if its hash is wrong, and the transaction errors if
        a contained transaction fails verification.
        """
        with self.lock:
            if block.status is not BlockStatus.MINED:
                raise ValidationError(f"Block {block.id} is {block.status.value}, expected mined")
            parent = self.get_latest_block()
            if block.parent_hash != self.tip_hash:
                raise ChainLinkError(
                    f"Parent hash mismatch for block {block.id}: "
                    f"tip is {self.tip_hash.hex()[:16]}, got {block.parent_hash.hex()[:16]}"
                )
            expected_id = parent.id + 1 if parent else 1
            if block.id != expected_id:
                raise ChainLinkError(f"Invalid block id {block.id}, expected {expected_id}")
            self.verify_block(block, parent)

            block.status = BlockStatus.APPENDED
            self.blocks.append(block)
            self.total_transactions += len(block.transactions)
            if self.monitor:
                self.monitor.update_chain(self)

    def commit(self, transactions: list[Transaction], event: BlockEvent,
               cancel: Optional[threading.Event] = None,
               executor: Optional[Executor] = None) -> Block:
        """
        Mines a block for the given transactions and appends it.

        If the tip moved while mining, the mined block is discarded and the
        search restarts against the new tip.
        """
        while True:
            candidate = self.build_candidate(transactions, event)
            if executor is not None:
                executor.submit(self.mine, candidate, cancel).result()
            else:
                self.mine(candidate, cancel)
            with self.lock:
                if candidate.parent_hash != self.tip_hash:
                    logger.warning(
                        f"Tip advanced while mining block {candidate.id}; discarding and retrying"
                    )
                    continue
                self.append(candidate)
                return candidate

    def create_genesis(self, cancel: Optional[threading.Event] = None) -> Block:
        with self.lock:
            if self.blocks:
                raise ChainLinkError("Genesis block already exists")
        block = self.commit([], BlockEvent.genesis(), cancel=cancel)
        logger.info(f"Genesis block created: {block.hash.hex()}")
        return block

    # ==========================================================================
    # VALIDATION
    # ==========================================================================

    def verify_block(self, block: Block, parent: Optional[Block]):
        """Checks one block against its parent, raising on the first problem."""
        expected_parent_hash = parent.hash if parent else GENESIS_PARENT_HASH
        if block.parent_hash != expected_parent_hash:
            raise ChainLinkError(f"Block {block.id} does not link to its parent")
        expected_id = parent.id + 1 if parent else 1
        if block.id != expected_id:
            raise ChainLinkError(f"Block id {block.id} out of sequence, expected {expected_id}")
        if parent and block.timestamp < parent.timestamp:
            raise ValidationError(f"Block {block.id} timestamp precedes its parent")
        if block.difficulty != self.expected_difficulty(block.id):
            raise InvalidProofOfWork(
                f"Block {block.id} difficulty {block.difficulty}, "
                f"expected {self.expected_difficulty(block.id)}"
            )
        if block.state_root != block.calculate_state_root():
            raise ValidationError(f"State root mismatch at block {block.id}")
        if block.hash is None or block.nonce is None:
            raise InvalidProofOfWork(f"Block {block.id} is not mined")
        if block.calculate_hash() != block.hash:
            raise InvalidProofOfWork(f"Block hash mismatch at block {block.id}")
        if not meets_difficulty(block.hash, block.difficulty):
            raise InvalidProofOfWork(
                f"Block {block.id} hash does not meet difficulty target: {block.difficulty}"
            )
        for tx in block.transactions:
            tx.verify()

    def verify_chain(self) -> bool:
        """Validates entire chain integrity."""
        with self.lock:
            blocks = list(self.blocks)
        parent = None
        for block in blocks:
            try:
                self.verify_block(block, parent)
            except ValidationError as e:
                logger.error(f"Chain verification failed at block {block.id}: {e}")
                return False
            parent = block
        return True

    # ==========================================================================
    # TRANSACTION PROCESSING
    # ==========================================================================

    def apply_transaction(self, tx: Transaction):
        """
        Verify a transfer and move the funds.

        Transfers to the pool address leave account space and are held in
        pool custody. Raises without changing any balance on failure.
        """
        with self.lock:
            try:
                tx.verify()
                sender = self.get_account(tx.sender)
                if sender.public_key != tx.sender_public_key:
                    raise BadSignature(f"Signing key does not belong to {tx.sender}")
                if tx.recipient != AMM_POOL_ADDRESS:
                    recipient = self.get_account(tx.recipient)
                else:
                    recipient = None
                if sender.get_balance(tx.currency) < tx.amount:
                    raise InsufficientBalance(
                        f"Insufficient {tx.currency} funds for transfer: "
                        f"{tx.sender} has {sender.get_balance(tx.currency):.9f}, "
                        f"needs {tx.amount:.9f}"
                    )

                sender.debit(tx.currency, tx.amount)
                if recipient is not None:
                    recipient.credit(tx.currency, tx.amount)
                else:
                    self.pool_custody[tx.currency] = self.pool_custody.get(tx.currency, 0.0) + tx.amount
            except ValidationError as e:
                logger.warning(f"Transaction {tx.id.hex()[:16]} rejected: {e}")
                if self.monitor:
                    self.monitor.record_tx("failed")
                raise
        if self.monitor:
            self.monitor.record_tx("success")

    def process_swap(self, account: Account, pool: AmmPool, direction: SwapDirection,
                     amount_in: float) -> tuple[float, Transaction]:
        """
        Swap with the pool on behalf of an account.

        Signs the input leg as a transaction to the pool address; the caller
        commits it into a block. Balance and pool checks happen before any
        state changes.
        """
        input_currency = direction.input_currency
        output_currency = direction.output_currency
        amount_in = check_amount(amount_in)
        check_currency(input_currency)

        with self.lock:
            balance = account.get_balance(input_currency)
            if balance < amount_in:
                if self.monitor:
                    self.monitor.record_tx("failed")
                raise InsufficientBalance(
                    f"Insufficient balance: {balance:.9f} {input_currency} (needed: {amount_in:.9f})"
                )
            tx = Transaction.create(account, AMM_POOL_ADDRESS, input_currency, amount_in)
            try:
                output = pool.swap(direction, amount_in)
            except ValidationError:
                if self.monitor:
                    self.monitor.record_tx("failed")
                raise
            account.debit(input_currency, amount_in)
            account.credit(output_currency, output)
            account.trade_count += 1
            # Custody follows the pool reserves
            self.pool_custody[input_currency] = self.pool_custody.get(input_currency, 0.0) + amount_in
            self.pool_custody[output_currency] = self.pool_custody.get(output_currency, 0.0) - output

        if self.monitor:
            self.monitor.record_tx("success")
            self.monitor.record_swap(direction.value)
        return output, tx

    # ==========================================================================
    # RECORDED OPERATIONS
    # ==========================================================================

    def _checkpoint(self, accounts: list[Account], pool: Optional[AmmPool] = None):
        return (
            [(account, dict(account.balances), account.trade_count) for account in accounts],
            dict(self.pool_custody),
            pool.checkpoint() if pool is not None else None,
        )

    def _rollback(self, saved, pool: Optional[AmmPool] = None):
        accounts, custody, pool_state = saved
        for account, balances, trade_count in accounts:
            account.balances = balances
            account.trade_count = trade_count
        self.pool_custody = custody
        if pool is not None:
            pool.restore(pool_state)
        if self.monitor:
            self.monitor.record_tx("rolled_back")

    def transfer_and_commit(self, tx: Transaction, event: BlockEvent,
                            cancel: Optional[threading.Event] = None,
                            executor: Optional[Executor] = None) -> Block:
        """
        Applies a transfer and mines the block that records it.

        If mining is cancelled the transfer is undone before MiningCancelled
        propagates, so balances never run ahead of the chain.
        """
        with self.lock:
            parties = [self.accounts[a] for a in (tx.sender, tx.recipient) if a in self.accounts]
            saved = self._checkpoint(parties)
            self.apply_transaction(tx)
            try:
                return self.commit([tx], event, cancel=cancel, executor=executor)
            except MiningCancelled:
                self._rollback(saved)
                logger.warning(f"Mining cancelled; transfer {tx.id.hex()[:16]} rolled back")
                raise

    def swap_and_commit(self, account: Account, pool: AmmPool, direction: SwapDirection,
                        amount_in: float, cancel: Optional[threading.Event] = None,
                        executor: Optional[Executor] = None) -> tuple[float, Block]:
        """process_swap() plus its swap block, undone if mining is cancelled."""
        with self.lock, pool.lock:
            saved = self._checkpoint([account], pool)
            output, tx = self.process_swap(account, pool, direction, amount_in)
            event = BlockEvent.swap(account.address, direction is SwapDirection.A_TO_B,
                                    amount_in, output)
            try:
                block = self.commit([tx], event, cancel=cancel, executor=executor)
            except MiningCancelled:
                self._rollback(saved, pool)
                logger.warning(f"Mining cancelled; swap by {account.address} rolled back")
                raise
            return output, block

    # ==========================================================================
    # PUBLIC API METHODS
    # ==========================================================================

    def snapshot(self) -> list[dict]:
        """Ordered block summaries, copied out under the chain lock."""
        with self.lock:
            return [block.summary() for block in self.blocks]

    def get_chain_stats(self) -> dict:
        with self.lock:
            latest = self.get_latest_block()
            return {
                "height": self.height,
                "tip_hash": self.tip_hash.hex(),
                "total_transactions": self.total_transactions,
                "accounts": len(self.accounts),
                "difficulty": self.difficulty,
                "pool_custody": dict(self.pool_custody),
                "last_block_time": latest.timestamp if latest else None,
            }
