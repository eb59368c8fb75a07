"""
Collision-free wallet address generation.

Addresses are 7-character base-62 codes obtained by pushing a counter through
the affine permutation x -> (a * x + b) mod 62^7. With a coprime to 62 the map
is a bijection on [0, 62^7), so distinct counters give distinct codes.
"""
import logging
import math
import secrets
from typing import Optional

from zux_ledger.errors import ExhaustionError

logger = logging.getLogger(__name__)

CHARSET = "0123456789abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ"
BASE = len(CHARSET)
CODE_LEN = 7
MODULUS = BASE ** CODE_LEN  # 3,521,614,606,208


def to_code(x: int) -> str:
    """Convert an integer in [0, 62^7) to a zero-padded 7-character code."""
    if not 0 <= x < MODULUS:
        raise ValueError(f"Value {x} outside code space")
    digits = []
    for _ in range(CODE_LEN):
        x, idx = divmod(x, BASE)
        digits.append(CHARSET[idx])
    return ''.join(reversed(digits))


def from_code(code: str) -> int:
    """Inverse of to_code."""
    if len(code) != CODE_LEN:
        raise ValueError(f"Code must be {CODE_LEN} characters")
    value = 0
    for ch in code:
        idx = CHARSET.find(ch)
        if idx < 0:
            raise ValueError(f"Invalid character {ch!r} in code")
        value = value * BASE + idx
    return value


def _random_multiplier() -> int:
    # Must not share a factor with 62 = 2 * 31
    while True:
        candidate = secrets.randbelow(MODULUS)
        if candidate > 0 and math.gcd(candidate, BASE) == 1:
            return candidate


class AddressGenerator:
    """Issues unique addresses for the lifetime of the generator."""

    def __init__(self, multiplier: Optional[int] = None, offset: Optional[int] = None,
                 start: int = 0):
        if multiplier is None:
            multiplier = _random_multiplier()
        if math.gcd(multiplier % MODULUS, BASE) != 1 or multiplier % MODULUS == 0:
            raise ValueError("Multiplier must be coprime with 62")
        if offset is None:
            offset = secrets.randbelow(MODULUS)
        if not 0 <= start <= MODULUS:
            raise ValueError("Start counter outside code space")

        self._a = multiplier % MODULUS
        self._b = offset % MODULUS
        self.counter = start
        self.reserved: set[str] = set()

    @property
    def remaining(self) -> int:
        return MODULUS - self.counter

    def reserve(self, code: str):
        """Reserve a specific code so it is never handed out."""
        self.reserved.add(code)

    def next_address(self) -> str:
        """
        Returns the next unused address.

        Raises ExhaustionError once all 62^7 counter values are consumed.
        """
        while True:
            if self.counter >= MODULUS:
                raise ExhaustionError(
                    f"Address space exhausted after {MODULUS} codes"
                )
            x = (self._a * self.counter + self._b) % MODULUS
            self.counter += 1
            code = to_code(x)
            if code in self.reserved:
                logger.debug(f"Skipping reserved address {code}")
                continue
            return code
