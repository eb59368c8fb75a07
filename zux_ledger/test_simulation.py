"""
End-to-end tests for the simulation driver.
"""
import msgpack
import pytest

from zux_ledger.amm import AMM_POOL_ADDRESS, SwapDirection
from zux_ledger.config import SimulationConfig
from zux_ledger.core import EventKind
from zux_ledger.errors import MiningCancelled
from zux_ledger.monitoring import Monitor
from zux_ledger.simulation import Simulation
from zux_ledger.wallet import SYSTEM_WALLET_ADDRESS

ACCOUNTS = 5


@pytest.fixture
def config():
    config = SimulationConfig.default()
    config.funding.account_count = ACCOUNTS
    config.chain.difficulty = 1
    config.chain.genesis_difficulty = 1
    config.agents.noise_trade_probability = 1.0
    config.run.seed = 1234
    config.run.status_interval = 0
    return config


@pytest.fixture
def simulation(config):
    simulation = Simulation(config, monitor=Monitor())
    simulation.setup()
    yield simulation
    simulation.close()


def test_genesis_sequence(simulation):
    blocks = simulation.chain.blocks
    # genesis, system wallet, wallets, two credits each, two pool fundings, pool
    assert len(blocks) == 1 + 1 + ACCOUNTS + 2 * ACCOUNTS + 2 + 1

    kinds = [block.event.kind for block in blocks]
    assert kinds[0] is EventKind.GENESIS
    assert kinds[1] is EventKind.WALLET_CREATION
    assert blocks[1].event.args == (SYSTEM_WALLET_ADDRESS,)
    assert kinds[2:2 + ACCOUNTS] == [EventKind.WALLET_CREATION] * ACCOUNTS
    assert kinds[-1] is EventKind.AMM_POOL_CREATION
    assert blocks[-2].event.args[0] == AMM_POOL_ADDRESS
    assert simulation.chain.verify_chain()


def test_accounts_are_funded(simulation, config):
    for account in simulation.accounts:
        assert account.get_balance("ZUX") == config.funding.base_per_account
        assert account.get_balance("USDZ") == config.funding.quote_per_account
        assert account.strategy is not None
    assert len({a.address for a in simulation.accounts}) == ACCOUNTS

    system = simulation.system_account
    assert system.get_balance("ZUX") == pytest.approx(
        config.funding.system_base_supply
        - ACCOUNTS * config.funding.base_per_account
        - config.pool.initial_reserve_a
    )
    assert simulation.chain.pool_custody["USDZ"] == config.pool.initial_reserve_b
    assert simulation.pool.price() == pytest.approx(simulation.initial_price)


def test_setup_only_once(simulation):
    with pytest.raises(RuntimeError):
        simulation.setup()


def test_ticks_mine_one_block_per_swap(simulation):
    height = simulation.chain.height
    simulation.run(ticks=20)

    assert simulation.ticks == 20
    assert simulation.swaps > 0
    assert simulation.swaps + simulation.failed_swaps <= 20
    assert simulation.chain.height == height + simulation.swaps
    assert all(b.event.kind is EventKind.SWAP for b in simulation.chain.blocks[height:])
    assert simulation.chain.verify_chain()
    assert simulation.pool.swap_count == simulation.swaps


def test_value_is_conserved(simulation):
    """ZUX held by accounts and pool only changes by what the pool keeps."""
    def total_base():
        return (sum(a.get_balance("ZUX") for a in simulation.accounts)
                + simulation.pool.reserve_a)

    before = total_base()
    simulation.run(ticks=30)
    assert total_base() == pytest.approx(before)


def test_execute_swap_rejection_is_counted(simulation):
    account = simulation.accounts[0]
    height = simulation.chain.height
    assert simulation.execute_swap(account, SwapDirection.B_TO_A, 10_000.0) is None
    assert simulation.failed_swaps == 1
    assert simulation.chain.height == height


def test_stop_halts_run(simulation):
    simulation.stop()
    simulation.run(ticks=10)
    assert simulation.ticks == 0


def test_snapshot_is_idempotent(simulation):
    simulation.run(ticks=10)
    first = msgpack.packb(simulation.snapshot(), use_bin_type=True)
    second = msgpack.packb(simulation.snapshot(), use_bin_type=True)
    assert first == second


def test_snapshot_hides_private_keys(simulation):
    snapshot = simulation.snapshot()
    packed = msgpack.packb(snapshot, use_bin_type=True)
    for account in simulation.accounts:
        assert bytes(account._signing_key) not in packed
        assert bytes(account._signing_key).hex().encode() not in packed
    row = snapshot["accounts"][0]
    assert set(row) == {"address", "public_key", "balances", "tier", "trade_count", "total_value"}


def test_stats(simulation):
    simulation.run(ticks=5)
    stats = simulation.get_stats()
    assert stats["ticks"] == 5
    assert sum(stats["accounts_by_tier"].values()) == ACCOUNTS
    assert stats["chain"]["height"] == simulation.chain.height
    assert sum(stats["trade_counts"].values()) == simulation.swaps


def test_seeded_strategies_are_reproducible(config):
    first = Simulation(config)
    second = Simulation(config)
    first.setup()
    second.setup()
    assert ([a.strategy.fomo_threshold for a in first.accounts]
            == [a.strategy.fomo_threshold for a in second.accounts])
    first.close()
    second.close()


def test_mining_workers(config):
    config.chain.mining_workers = 2
    simulation = Simulation(config)
    simulation.setup()
    simulation.run(ticks=5)
    assert simulation.chain.verify_chain()
    simulation.close()
    assert simulation.executor is None


def test_cancelled_swap_leaves_state_unchanged(simulation):
    account = simulation.accounts[0]
    height = simulation.chain.height
    pool_state = simulation.pool.checkpoint()
    balances = dict(account.balances)
    custody = dict(simulation.chain.pool_custody)

    simulation.stop()
    with pytest.raises(MiningCancelled):
        simulation.execute_swap(account, SwapDirection.B_TO_A, 10.0)

    assert simulation.chain.height == height
    assert simulation.pool.checkpoint() == pool_state
    assert simulation.pool.swap_count == 0
    assert account.balances == balances
    assert account.trade_count == 0
    assert simulation.chain.pool_custody == custody
    assert simulation.swaps == 0


def test_cancelled_funding_leaves_balances_unchanged(simulation):
    account = simulation.accounts[0]
    system = simulation.system_account
    height = simulation.chain.height
    before = (dict(account.balances), dict(system.balances))

    simulation.stop()
    with pytest.raises(MiningCancelled):
        simulation.fund(account.address, "ZUX", 10.0)

    assert (account.balances, system.balances) == before
    assert simulation.chain.height == height


def test_run_without_wallets(config):
    config.funding.account_count = 0
    simulation = Simulation(config)
    simulation.run(ticks=3)

    assert simulation.ticks == 3
    assert simulation.swaps == 0
    # genesis, system wallet, two pool fundings, pool
    assert simulation.chain.height == 5
    simulation.close()


def test_stop_before_setup_returns_cleanly(config):
    simulation = Simulation(config)
    simulation.stop()
    simulation.run(ticks=1)

    assert simulation.ticks == 0
    assert simulation.pool is None
    assert simulation.chain.height == 0
    simulation.close()


def test_pool_custody_tracks_reserves(simulation):
    simulation.run(ticks=20)
    custody = simulation.chain.get_chain_stats()["pool_custody"]
    assert custody["ZUX"] == pytest.approx(simulation.pool.reserve_a)
    assert custody["USDZ"] == pytest.approx(simulation.pool.reserve_b)
