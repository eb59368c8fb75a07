"""
Price-reactive trading strategies for simulated wallets.

The decision step is a single switch over thresholds and tier multipliers:
it reads the current price, the strategy's short price memory and the
wallet balances, and returns Hold, Buy(amount) or Sell(amount). It never
checks whether the trade can settle; the ledger and pool do that.
"""
import enum
import random
from collections import deque
from typing import NamedTuple, Optional

PRICE_MEMORY = 3

# Fraction of the relevant balance committed per trade, by tier
TIER_POSITION_FRACTION = {
    "mega_whale": 0.95,
    "whale": 0.60,
    "regular": 0.25,
}

# Relative threshold shift applied to whale tiers with a manipulation intent
MANIPULATION_SHIFT = 0.5

WHALE_PROBABILITY = 0.10
MEGA_WHALE_PROBABILITY = 0.01
MANIPULATION_PROBABILITY = 0.30
THRESHOLD_RANGE = (0.005, 0.03)


class Tier(enum.Enum):
    REGULAR = "regular"
    WHALE = "whale"
    MEGA_WHALE = "mega_whale"

    @property
    def position_fraction(self) -> float:
        return TIER_POSITION_FRACTION[self.value]


class TradeAction(enum.Enum):
    HOLD = "hold"
    BUY = "buy"
    SELL = "sell"


class Decision(NamedTuple):
    action: TradeAction
    amount: float = 0.0


HOLD = Decision(TradeAction.HOLD)


class TradingStrategy:
    """Per-wallet strategy state; mutated only by its own decide()."""

    def __init__(self,
                 fomo_threshold: float,
                 panic_threshold: float,
                 whale_mode: bool = False,
                 mega_whale_mode: bool = False,
                 manipulation_intent: int = 0,
                 initial_price: Optional[float] = None,
                 memory: int = PRICE_MEMORY):
        if fomo_threshold < 0 or panic_threshold < 0:
            raise ValueError("Thresholds must be non-negative")
        if manipulation_intent not in (-1, 0, 1):
            raise ValueError("manipulation_intent must be -1, 0 or 1")
        self.fomo_threshold = fomo_threshold
        self.panic_threshold = panic_threshold
        self.whale_mode = whale_mode
        self.mega_whale_mode = mega_whale_mode
        self.manipulation_intent = manipulation_intent
        self.price_history: deque[float] = deque(maxlen=memory)
        if initial_price is not None:
            self.price_history.append(initial_price)
        self.last_trade_time = 0.0

    @classmethod
    def random(cls, rng: random.Random, initial_price: Optional[float] = None,
               whale_probability: float = WHALE_PROBABILITY,
               mega_whale_probability: float = MEGA_WHALE_PROBABILITY,
               manipulation_probability: float = MANIPULATION_PROBABILITY,
               threshold_range: tuple[float, float] = THRESHOLD_RANGE) -> 'TradingStrategy':
        """Draws a strategy the way new wallets get one at creation time."""
        whale_mode = rng.random() < whale_probability
        mega_whale_mode = rng.random() < mega_whale_probability
        low, high = threshold_range
        fomo_threshold = rng.uniform(low, high)
        panic_threshold = rng.uniform(low, high)
        if rng.random() < manipulation_probability:
            manipulation_intent = 1 if rng.random() < 0.5 else -1
        else:
            manipulation_intent = 0
        return cls(
            fomo_threshold=fomo_threshold,
            panic_threshold=panic_threshold,
            whale_mode=whale_mode,
            mega_whale_mode=mega_whale_mode,
            manipulation_intent=manipulation_intent,
            initial_price=initial_price,
        )

    @property
    def tier(self) -> Tier:
        if self.mega_whale_mode:
            return Tier.MEGA_WHALE
        if self.whale_mode:
            return Tier.WHALE
        return Tier.REGULAR

    def effective_thresholds(self) -> tuple[float, float]:
        """(fomo, panic) after applying the manipulation bias for whale tiers."""
        fomo, panic = self.fomo_threshold, self.panic_threshold
        if self.tier is Tier.REGULAR or self.manipulation_intent == 0:
            return fomo, panic
        shift = MANIPULATION_SHIFT * self.manipulation_intent
        # Bulls buy on smaller rises and tolerate larger drops; bears the reverse
        return fomo * (1.0 - shift), panic * (1.0 + shift)

    def update_price_history(self, current_price: float):
        self.price_history.append(current_price)

    def decide(self, current_price: float, current_time: float,
               base_balance: float, quote_balance: float) -> Decision:
        self.update_price_history(current_price)
        if len(self.price_history) < 2:
            return HOLD

        previous_price = self.price_history[-2]
        if previous_price <= 0:
            return HOLD
        delta = (current_price - previous_price) / previous_price

        fomo, panic = self.effective_thresholds()
        fraction = self.tier.position_fraction

        # FOMO is checked first and wins a tie
        if delta > fomo:
            if quote_balance <= 0:
                return HOLD
            self.last_trade_time = current_time
            return Decision(TradeAction.BUY, quote_balance * fraction)

        if delta < -panic:
            if base_balance <= 0:
                return HOLD
            self.last_trade_time = current_time
            return Decision(TradeAction.SELL, base_balance * fraction)

        return HOLD

    def __repr__(self) -> str:
        return (
            f"TradingStrategy(tier={self.tier.value}, fomo={self.fomo_threshold:.4f}, "
            f"panic={self.panic_threshold:.4f}, intent={self.manipulation_intent})"
        )
