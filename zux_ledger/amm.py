"""
AMM (Automated Market Maker) liquidity pool.
Implements constant product formula: x * y = k

Reserve A is the base asset (ZUX), reserve B the quote asset (USDZ); the pool
price is B per A. Besides reserves the pool keeps a bounded price history,
a rolling 5-second window (open/high/low/volume) and lifetime statistics.
"""
import enum
import logging
import math
import threading
import time
from collections import deque
from typing import Callable, NamedTuple, Optional

from zux_ledger.errors import InsufficientLiquidity, NonPositiveAmount
from zux_ledger.wallet import BASE_CURRENCY, QUOTE_CURRENCY

logger = logging.getLogger(__name__)

AMM_POOL_ADDRESS = "AMM_POOL_ZUX_USDZ"

DEFAULT_FEE_RATE = 0.003  # 30 basis points
MIN_RESERVE = 1e-9        # no reserve may fall below this
MIN_OUTPUT = 1e-9
WINDOW_SECONDS = 5.0
PRICE_HISTORY_LIMIT = 1000

_STATE_FIELDS = (
    "reserve_a", "reserve_b",
    "window_open", "window_high", "window_low", "window_volume", "window_started_at",
    "all_time_high", "all_time_low", "total_volume",
    "fees_collected", "fees_a", "fees_b", "swap_count",
)


class SwapDirection(enum.Enum):
    A_TO_B = "a_to_b"  # sell base for quote
    B_TO_A = "b_to_a"  # buy base with quote

    @property
    def input_currency(self) -> str:
        return BASE_CURRENCY if self is SwapDirection.A_TO_B else QUOTE_CURRENCY

    @property
    def output_currency(self) -> str:
        return QUOTE_CURRENCY if self is SwapDirection.A_TO_B else BASE_CURRENCY


class PricePoint(NamedTuple):
    timestamp: float
    price: float


def quote(input_amount: float, input_reserve: float, output_reserve: float,
          fee_rate: float = DEFAULT_FEE_RATE) -> float:
    """
    Calculate swap output using constant product formula with fees.

    Formula: (x + dx * (1 - fee)) * (y - dy) = x * y
    Solving for dy: dy = (y * dx * (1 - fee)) / (x + dx * (1 - fee))
    """
    input_after_fee = input_amount * (1.0 - fee_rate)
    return (input_after_fee * output_reserve) / (input_reserve + input_after_fee)


class AmmPool:
    """
    Single-pair constant product pool.

    All mutation goes through swap(), which holds the pool lock across
    read-reserves, compute and commit; snapshot() copies out under the same
    lock so readers never see one leg updated without the other.
    """

    def __init__(self, reserve_a: float, reserve_b: float,
                 fee_rate: float = DEFAULT_FEE_RATE,
                 history_limit: int = PRICE_HISTORY_LIMIT,
                 window_seconds: float = WINDOW_SECONDS,
                 clock: Callable[[], float] = time.time):
        if not (math.isfinite(reserve_a) and math.isfinite(reserve_b)):
            raise ValueError("Reserves must be finite")
        if reserve_a <= MIN_RESERVE or reserve_b <= MIN_RESERVE:
            raise InsufficientLiquidity("Initial reserves must be strictly positive")
        if not 0 <= fee_rate < 1:
            raise ValueError("Fee rate must be in [0, 1)")

        self.lock = threading.RLock()
        self.clock = clock
        self.reserve_a = float(reserve_a)
        self.reserve_b = float(reserve_b)
        self.fee_rate = fee_rate
        self.window_seconds = window_seconds

        now = clock()
        initial_price = self.reserve_b / self.reserve_a
        self.price_history: deque[PricePoint] = deque(
            [PricePoint(now, initial_price)], maxlen=history_limit
        )

        # Rolling window
        self.window_open = initial_price
        self.window_high = initial_price
        self.window_low = initial_price
        self.window_volume = 0.0
        self.window_started_at = now

        # Since inception
        self.open_price = initial_price
        self.all_time_high = initial_price
        self.all_time_low = initial_price
        self.total_volume = 0.0
        self.fees_collected = 0.0
        self.fees_a = 0.0
        self.fees_b = 0.0
        self.swap_count = 0

    @property
    def k(self) -> float:
        return self.reserve_a * self.reserve_b

    def price(self) -> float:
        """Price of one unit of A in B."""
        return self.reserve_b / self.reserve_a

    def _reserves_for(self, direction: SwapDirection) -> tuple[float, float]:
        if direction is SwapDirection.A_TO_B:
            return self.reserve_a, self.reserve_b
        return self.reserve_b, self.reserve_a

    def get_swap_output(self, direction: SwapDirection, input_amount: float) -> float:
        """Quote against the current reserves without changing anything."""
        with self.lock:
            input_reserve, output_reserve = self._reserves_for(direction)
            return quote(input_amount, input_reserve, output_reserve, self.fee_rate)

    def swap(self, direction: SwapDirection, input_amount: float,
             now: Optional[float] = None) -> float:
        """
        Execute a swap and return the output amount.

        Raises NonPositiveAmount if the input (or the resulting output) is not
        positive and InsufficientLiquidity if the output would take the
        opposite reserve to (or below) MIN_RESERVE. Nothing changes on error.
        """
        if isinstance(input_amount, bool) or not isinstance(input_amount, (int, float)) \
                or not math.isfinite(input_amount) or input_amount <= 0:
            raise NonPositiveAmount(f"Swap amount must be greater than zero, got {input_amount}")
        input_amount = float(input_amount)

        with self.lock:
            input_reserve, output_reserve = self._reserves_for(direction)
            output = quote(input_amount, input_reserve, output_reserve, self.fee_rate)

            if output >= output_reserve or output_reserve - output < MIN_RESERVE:
                raise InsufficientLiquidity(
                    f"Swap of {input_amount} {direction.input_currency} would drain "
                    f"the {direction.output_currency} reserve ({output_reserve})"
                )
            if output < MIN_OUTPUT:
                raise NonPositiveAmount(
                    f"Swap would result in too small output: {output}"
                )

            price_before = self.price()
            fee = input_amount * self.fee_rate

            if direction is SwapDirection.A_TO_B:
                self.reserve_a += input_amount
                self.reserve_b -= output
                input_value = input_amount * price_before
                output_value = output
                self.fees_a += fee
                fee_value = fee * price_before
            else:
                self.reserve_b += input_amount
                self.reserve_a -= output
                input_value = input_amount
                output_value = output * price_before
                self.fees_b += fee
                fee_value = fee

            # Average of both legs to avoid double counting
            volume = (input_value + output_value) / 2.0
            self.fees_collected += fee_value
            self.swap_count += 1
            self._record(price_before, self.price(), volume,
                         self.clock() if now is None else now)

            logger.debug(
                f"Swap: {input_amount:.9f} {direction.input_currency} -> "
                f"{output:.9f} {direction.output_currency}, price: {self.price():.9f}"
            )
            return output

    def _record(self, price_before: float, price_after: float, volume: float, now: float):
        self.price_history.append(PricePoint(now, price_after))

        if now - self.window_started_at >= self.window_seconds:
            # Close of the previous window becomes the new open
            self.window_open = price_before
            self.window_high = price_before
            self.window_low = price_before
            self.window_volume = 0.0
            self.window_started_at = now

        self.window_volume += volume
        self.window_high = max(self.window_high, price_after)
        self.window_low = min(self.window_low, price_after)

        self.total_volume += volume
        self.all_time_high = max(self.all_time_high, price_after)
        self.all_time_low = min(self.all_time_low, price_after)

    def checkpoint(self) -> dict:
        """Copies all mutable pool state; pass the result to restore() to undo swaps."""
        with self.lock:
            state = {name: getattr(self, name) for name in _STATE_FIELDS}
            state["price_history"] = list(self.price_history)
            return state

    def restore(self, state: dict):
        with self.lock:
            for name in _STATE_FIELDS:
                setattr(self, name, state[name])
            self.price_history.clear()
            self.price_history.extend(state["price_history"])

    def _window(self, now: float) -> dict:
        """The rolling window as of `now`; an elapsed window reads as empty."""
        if now - self.window_started_at >= self.window_seconds:
            price = self.price()
            return {"open": price, "high": price, "low": price, "volume": 0.0,
                    "started_at": self.window_started_at, "expired": True}
        return {"open": self.window_open, "high": self.window_high, "low": self.window_low,
                "volume": self.window_volume, "started_at": self.window_started_at,
                "expired": False}

    def total_liquidity(self) -> float:
        """Both reserves valued in the quote currency."""
        with self.lock:
            return self.reserve_a * self.price() + self.reserve_b

    def utilization(self) -> float:
        """Recent window volume as a percentage of total liquidity, capped at 100."""
        with self.lock:
            liquidity = self.total_liquidity()
            if liquidity <= 0:
                return 0.0
            volume = self._window(self.clock())["volume"]
            return min(100.0, volume / liquidity * 100.0)

    def get_recent_price_history(self, count: int) -> list[PricePoint]:
        with self.lock:
            if count <= 0:
                return []
            return list(self.price_history)[-count:]

    def _change_pct(self, open_price: float) -> float:
        if open_price <= 0:
            return 0.0
        return (self.price() - open_price) / open_price * 100.0

    def snapshot(self) -> dict:
        """Consistent copy of reserves and analytics."""
        with self.lock:
            price = self.price()
            window = self._window(self.clock())
            liquidity = self.total_liquidity()
            return {
                "reserve_a": self.reserve_a,
                "reserve_b": self.reserve_b,
                "k": self.k,
                "fee_rate": self.fee_rate,
                "price": price,
                "total_liquidity": liquidity,
                "utilization": min(100.0, window["volume"] / liquidity * 100.0) if liquidity > 0 else 0.0,
                "window": dict(window, change_pct=self._change_pct(window["open"])),
                "lifetime": {
                    "open": self.open_price,
                    "high": self.all_time_high,
                    "low": self.all_time_low,
                    "volume": self.total_volume,
                    "fees": self.fees_collected,
                    "fees_a": self.fees_a,
                    "fees_b": self.fees_b,
                    "swap_count": self.swap_count,
                    "avg_trade_size": self.total_volume / self.swap_count if self.swap_count else 0.0,
                    "change_pct": self._change_pct(self.open_price),
                },
                "price_history": [[p.timestamp, p.price] for p in self.price_history],
            }

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"AmmPool("
            f"reserve_a={self.reserve_a}, "
            f"reserve_b={self.reserve_b}, "
            f"fee_rate={self.fee_rate}, "
            f"price={self.price()})"
        )
