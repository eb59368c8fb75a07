"""
Tests for the price-reactive trading strategies.
"""
import random

import pytest

from zux_ledger.agent import (
    HOLD,
    MANIPULATION_SHIFT,
    Tier,
    TradeAction,
    TradingStrategy,
)


def make_strategy(**kwargs):
    params = dict(fomo_threshold=0.02, panic_threshold=0.02)
    params.update(kwargs)
    return TradingStrategy(**params)


def test_fomo_buys_on_rise():
    strategy = make_strategy(initial_price=1.00)
    decision = strategy.decide(1.10, 10.0, base_balance=100.0, quote_balance=500.0)
    assert decision.action is TradeAction.BUY
    assert decision.amount == pytest.approx(500.0 * Tier.REGULAR.position_fraction)
    assert strategy.last_trade_time == 10.0


def test_panic_sells_on_drop():
    strategy = make_strategy(initial_price=1.00)
    decision = strategy.decide(0.90, 10.0, base_balance=100.0, quote_balance=500.0)
    assert decision.action is TradeAction.SELL
    assert decision.amount == pytest.approx(100.0 * Tier.REGULAR.position_fraction)


def test_small_moves_hold():
    strategy = make_strategy(initial_price=1.00)
    assert strategy.decide(1.01, 10.0, 100.0, 500.0) == HOLD
    assert strategy.decide(1.00, 11.0, 100.0, 500.0) == HOLD
    assert strategy.last_trade_time == 0.0


def test_needs_two_price_samples():
    strategy = make_strategy()
    assert strategy.decide(1.00, 1.0, 100.0, 500.0) == HOLD
    assert strategy.decide(2.00, 2.0, 100.0, 500.0).action is TradeAction.BUY


def test_holds_without_balance():
    strategy = make_strategy(initial_price=1.00)
    assert strategy.decide(1.10, 1.0, base_balance=100.0, quote_balance=0.0) == HOLD
    strategy = make_strategy(initial_price=1.00)
    assert strategy.decide(0.90, 1.0, base_balance=0.0, quote_balance=500.0) == HOLD


def test_price_memory_is_bounded():
    strategy = make_strategy(initial_price=1.0)
    for price in (1.0, 1.0, 1.0, 1.0):
        strategy.decide(price, 0.0, 1.0, 1.0)
    assert len(strategy.price_history) == 3


def test_tier_fractions_are_ordered():
    assert (Tier.MEGA_WHALE.position_fraction
            > Tier.WHALE.position_fraction
            > Tier.REGULAR.position_fraction)


def test_tier_selection():
    assert make_strategy().tier is Tier.REGULAR
    assert make_strategy(whale_mode=True).tier is Tier.WHALE
    assert make_strategy(mega_whale_mode=True).tier is Tier.MEGA_WHALE
    assert make_strategy(whale_mode=True, mega_whale_mode=True).tier is Tier.MEGA_WHALE


def test_whale_buys_larger_positions():
    regular = make_strategy(initial_price=1.0).decide(1.1, 0.0, 100.0, 500.0)
    whale = make_strategy(whale_mode=True, initial_price=1.0).decide(1.1, 0.0, 100.0, 500.0)
    mega = make_strategy(mega_whale_mode=True, initial_price=1.0).decide(1.1, 0.0, 100.0, 500.0)
    assert mega.amount > whale.amount > regular.amount


def test_manipulation_shifts_whale_thresholds():
    bull = make_strategy(whale_mode=True, manipulation_intent=1)
    fomo, panic = bull.effective_thresholds()
    assert fomo == pytest.approx(0.02 * (1 - MANIPULATION_SHIFT))
    assert panic == pytest.approx(0.02 * (1 + MANIPULATION_SHIFT))

    bear = make_strategy(mega_whale_mode=True, manipulation_intent=-1)
    fomo, panic = bear.effective_thresholds()
    assert fomo > 0.02
    assert panic < 0.02


def test_manipulation_ignored_for_regular_tier():
    strategy = make_strategy(manipulation_intent=1)
    assert strategy.effective_thresholds() == (0.02, 0.02)


def test_bullish_whale_buys_on_smaller_rise():
    # A 1.5% rise is below the base threshold but above the shifted one
    regular = make_strategy(initial_price=1.0)
    bull = make_strategy(whale_mode=True, manipulation_intent=1, initial_price=1.0)
    assert regular.decide(1.015, 0.0, 100.0, 500.0) == HOLD
    assert bull.decide(1.015, 0.0, 100.0, 500.0).action is TradeAction.BUY


def test_invalid_parameters():
    with pytest.raises(ValueError):
        make_strategy(fomo_threshold=-0.1)
    with pytest.raises(ValueError):
        make_strategy(manipulation_intent=2)


def test_random_strategies_respect_ranges():
    rng = random.Random(42)
    strategies = [TradingStrategy.random(rng, initial_price=0.01) for _ in range(2000)]
    for strategy in strategies:
        assert 0.005 <= strategy.fomo_threshold <= 0.03
        assert 0.005 <= strategy.panic_threshold <= 0.03
        assert strategy.manipulation_intent in (-1, 0, 1)
        assert list(strategy.price_history) == [0.01]
    whales = sum(1 for s in strategies if s.tier is not Tier.REGULAR)
    assert 100 < whales < 350


def test_random_is_reproducible():
    first = TradingStrategy.random(random.Random(1))
    second = TradingStrategy.random(random.Random(1))
    assert first.fomo_threshold == second.fomo_threshold
    assert first.tier is second.tier
