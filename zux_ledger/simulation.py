"""
Market simulation driver.

Owns the chain, the pool, the address generator and the optional monitor,
seeds everything through the genesis sequence and then repeatedly lets
randomly chosen agents trade against the pool, one mined block per swap.
"""
import logging
import random
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Optional

from zux_ledger.agent import TradeAction, TradingStrategy
from zux_ledger.amm import AMM_POOL_ADDRESS, AmmPool, SwapDirection
from zux_ledger.chain import Blockchain
from zux_ledger.config import SimulationConfig
from zux_ledger.core import BlockEvent, Transaction
from zux_ledger.errors import (
    InsufficientBalance,
    InsufficientLiquidity,
    InvalidAmount,
    MiningCancelled,
)
from zux_ledger.identity import AddressGenerator
from zux_ledger.monitoring import Monitor
from zux_ledger.wallet import (
    BASE_CURRENCY,
    QUOTE_CURRENCY,
    SYSTEM_WALLET_ADDRESS,
    Account,
)

logger = logging.getLogger(__name__)


class Simulation:
    def __init__(self, config: Optional[SimulationConfig] = None,
                 monitor: Optional[Monitor] = None,
                 generator: Optional[AddressGenerator] = None):
        self.config = config or SimulationConfig.default()
        if monitor is None and self.config.monitoring.enabled:
            monitor = Monitor(self.config.monitoring.host, self.config.monitoring.port)
        self.monitor = monitor
        self.rng = random.Random(self.config.run.seed)
        self.generator = generator or AddressGenerator()

        chain_config = self.config.chain
        self.chain = Blockchain(
            network_name=chain_config.network_name,
            version=chain_config.version,
            inception_year=chain_config.inception_year,
            difficulty=chain_config.difficulty,
            genesis_difficulty=chain_config.genesis_difficulty,
            monitor=monitor,
        )
        self.pool: Optional[AmmPool] = None
        self.system_account: Optional[Account] = None
        self.accounts: list[Account] = []

        self.cancel = threading.Event()
        self.executor = None
        if chain_config.mining_workers > 0:
            self.executor = ThreadPoolExecutor(
                max_workers=chain_config.mining_workers,
                thread_name_prefix="miner",
            )

        self.ticks = 0
        self.swaps = 0
        self.failed_swaps = 0
        self.noise_trades = 0
        self.traded = {BASE_CURRENCY: 0.0, QUOTE_CURRENCY: 0.0}
        self.started_at = None

    @property
    def initial_price(self) -> float:
        return self.config.pool.initial_reserve_b / self.config.pool.initial_reserve_a

    # ==========================================================================
    # GENESIS SEQUENCE
    # ==========================================================================

    def setup(self):
        """Creates genesis, the system wallet, all accounts and the pool."""
        if self.chain.height:
            raise RuntimeError("Simulation is already set up")
        self.started_at = time.time()
        self.chain.create_genesis(self.cancel)

        funding = self.config.funding
        self.system_account = Account.create(self.generator, SYSTEM_WALLET_ADDRESS)
        self.system_account.credit(BASE_CURRENCY, funding.system_base_supply)
        self.system_account.credit(QUOTE_CURRENCY, funding.system_quote_supply)
        self.chain.register_account(self.system_account)
        self._commit([], BlockEvent.wallet_creation(SYSTEM_WALLET_ADDRESS))
        logger.info(
            f"System wallet created with {funding.system_base_supply:.0f} {BASE_CURRENCY} "
            f"and {funding.system_quote_supply:.0f} {QUOTE_CURRENCY}"
        )

        for i in range(funding.account_count):
            self.create_account()
            if (i + 1) % 100 == 0:
                logger.info(f"Created {i + 1}/{funding.account_count} wallets")

        for account in self.accounts:
            self.fund(account.address, BASE_CURRENCY, funding.base_per_account)
            self.fund(account.address, QUOTE_CURRENCY, funding.quote_per_account)
        logger.info(f"Funded {len(self.accounts)} wallets")

        pool_config = self.config.pool
        self.fund(AMM_POOL_ADDRESS, BASE_CURRENCY, pool_config.initial_reserve_a)
        self.fund(AMM_POOL_ADDRESS, QUOTE_CURRENCY, pool_config.initial_reserve_b)
        self.pool = AmmPool(
            pool_config.initial_reserve_a,
            pool_config.initial_reserve_b,
            fee_rate=pool_config.fee_rate,
            history_limit=pool_config.history_limit,
            window_seconds=pool_config.window_seconds,
        )
        self._commit([], BlockEvent.amm_pool_creation(AMM_POOL_ADDRESS))
        logger.info(f"AMM pool created: {self.pool}")
        if self.monitor:
            self.monitor.update_pool(self.pool)

    def create_account(self) -> Account:
        agents = self.config.agents
        account = Account.create(self.generator)
        account.strategy = TradingStrategy.random(
            self.rng,
            initial_price=self.initial_price,
            whale_probability=agents.whale_probability,
            mega_whale_probability=agents.mega_whale_probability,
            manipulation_probability=agents.manipulation_probability,
            threshold_range=(agents.threshold_low, agents.threshold_high),
        )
        self.chain.register_account(account)
        self.accounts.append(account)
        self._commit([], BlockEvent.wallet_creation(account.address))
        logger.debug(f"Created wallet {account.address} ({account.tier})")
        return account

    def fund(self, address: str, currency: str, amount: float):
        """Transfers from the system wallet and records it in a token credit block."""
        tx = Transaction.create(self.system_account, address, currency, amount)
        self.chain.transfer_and_commit(tx, BlockEvent.token_credit(address, currency, amount),
                                       cancel=self.cancel, executor=self.executor)

    def _commit(self, transactions, event):
        return self.chain.commit(transactions, event, cancel=self.cancel, executor=self.executor)

    # ==========================================================================
    # TRADING LOOP
    # ==========================================================================

    def choose_trade(self, account: Account) -> Optional[tuple[SwapDirection, float]]:
        """Asks the account's strategy, falling back to an occasional noise trade."""
        base = account.get_balance(BASE_CURRENCY)
        quote = account.get_balance(QUOTE_CURRENCY)
        decision = account.strategy.decide(self.pool.price(), time.time(), base, quote)

        if decision.action is TradeAction.BUY:
            return SwapDirection.B_TO_A, decision.amount
        if decision.action is TradeAction.SELL:
            return SwapDirection.A_TO_B, decision.amount

        agents = self.config.agents
        if self.rng.random() >= agents.noise_trade_probability:
            return None
        fraction = self.rng.uniform(agents.noise_fraction_low, agents.noise_fraction_high)
        self.noise_trades += 1
        if self.rng.random() < 0.5:
            return SwapDirection.B_TO_A, quote * fraction
        return SwapDirection.A_TO_B, base * fraction

    def execute_swap(self, account: Account, direction: SwapDirection,
                     amount: float) -> Optional[float]:
        """
        Runs one swap and mines its block.

        Expected rejections are logged and counted; the simulation continues.
        MiningCancelled propagates with the swap already undone.
        """
        try:
            output, _ = self.chain.swap_and_commit(account, self.pool, direction, amount,
                                                   cancel=self.cancel, executor=self.executor)
        except (InsufficientBalance, InsufficientLiquidity, InvalidAmount) as e:
            self.failed_swaps += 1
            logger.warning(f"Swap by {account.address} rejected: {e}")
            return None

        self.swaps += 1
        self.traded[direction.input_currency] += amount
        if self.monitor:
            self.monitor.update_pool(self.pool)
        logger.debug(
            f"{account.address} swapped {amount:.9f} {direction.input_currency} "
            f"for {output:.9f} {direction.output_currency}"
        )
        return output

    def tick(self):
        if self.pool is None:
            raise RuntimeError("Simulation is not set up")
        if not self.accounts:
            logger.warning("No wallets available for swap")
            self.ticks += 1
            return
        min_trade = self.config.agents.min_trade_amount
        for _ in range(self.config.agents.agents_per_tick):
            if self.cancel.is_set():
                break
            account = self.rng.choice(self.accounts)
            trade = self.choose_trade(account)
            if trade is None:
                continue
            direction, amount = trade
            if amount < min_trade:
                continue
            self.execute_swap(account, direction, amount)
        self.ticks += 1

    def run(self, ticks: Optional[int] = None):
        """Runs ticks until the count is reached or stop() is called."""
        if ticks is None:
            ticks = self.config.run.ticks
        status_interval = self.config.run.status_interval
        try:
            if self.pool is None:
                self.setup()
            for _ in range(ticks):
                if self.cancel.is_set():
                    break
                self.tick()
                if status_interval and self.ticks % status_interval == 0:
                    self.log_status()
                if self.config.run.tick_interval > 0:
                    self.cancel.wait(self.config.run.tick_interval)
        except MiningCancelled:
            logger.info("Mining cancelled, stopping simulation")

    def stop(self):
        """Signals the loop and any in-flight nonce search to stop."""
        logger.info("Stopping simulation...")
        self.cancel.set()

    def close(self):
        self.stop()
        if self.executor is not None:
            self.executor.shutdown(wait=True)
            self.executor = None
        if self.monitor:
            self.monitor.stop_server()

    # ==========================================================================
    # REPORTING
    # ==========================================================================

    def get_stats(self) -> dict:
        attempted = self.swaps + self.failed_swaps
        by_tier = {}
        for account in self.accounts:
            by_tier[account.tier] = by_tier.get(account.tier, 0) + 1
        return {
            "ticks": self.ticks,
            "swaps": self.swaps,
            "failed_swaps": self.failed_swaps,
            "noise_trades": self.noise_trades,
            "success_rate": self.swaps / attempted * 100 if attempted else 0.0,
            "traded": dict(self.traded),
            "accounts_by_tier": by_tier,
            "trade_counts": {a.address: a.trade_count for a in self.accounts if a.trade_count},
            "chain": self.chain.get_chain_stats(),
        }

    def log_status(self):
        stats = self.get_stats()
        if self.monitor:
            self.monitor.update_system()
        logger.info(f"=== Simulation Status ===")
        logger.info(f"Ticks: {stats['ticks']}")
        logger.info(f"Height: {stats['chain']['height']}")
        logger.info(f"Swaps: {stats['swaps']} ({stats['failed_swaps']} rejected)")
        if self.pool is not None:
            pool = self.pool.snapshot()
            logger.info(
                f"Price: {pool['price']:.9f} {QUOTE_CURRENCY} "
                f"({pool['lifetime']['change_pct']:+.2f}% since open)"
            )
            logger.info(f"Utilization: {pool['utilization']:.2f}%")
        logger.info("=========================")

    def snapshot(self) -> dict:
        """Chain, pool and accounts captured together under both locks."""
        with self.chain.lock:
            if self.pool is None:
                return {
                    "chain": self.chain.snapshot(),
                    "pool": None,
                    "accounts": [a.snapshot() for a in self.accounts],
                }
            with self.pool.lock:
                price = self.pool.price()
                return {
                    "chain": self.chain.snapshot(),
                    "pool": self.pool.snapshot(),
                    "accounts": [a.snapshot(price) for a in self.accounts],
                }
