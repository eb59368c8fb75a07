"""
Proof-of-work nonce search.

The search is unbounded: it runs until a hash with the required
number of leading zero hex characters turns up or the caller cancels it
through a threading.Event.
"""
import time
import threading
from typing import Callable, Optional

import msgpack

from zux_ledger.crypto import generate_hash
from zux_ledger.errors import MiningCancelled

CHECK_INTERVAL = 1024


def meets_difficulty(block_hash: bytes, difficulty: int) -> bool:
    """True if the hex digest starts with `difficulty` zeros."""
    return block_hash.hex().startswith('0' * difficulty)


def search_nonce(header_prefix: bytes,
                 difficulty: int,
                 cancel: Optional[threading.Event] = None,
                 start_nonce: int = 0,
                 check_interval: int = CHECK_INTERVAL,
                 on_progress: Optional[Callable[[int], None]] = None) -> tuple[bytes, int]:
    """
    Increments the nonce until hash(header_prefix || nonce) meets the difficulty.

    Every `check_interval` attempts the cancel event is polled, the optional
    progress callback is invoked and the thread yields so other threads
    (and signal handlers) get to run.

    Returns (hash, nonce). Raises MiningCancelled if cancel is set.
    """
    if difficulty < 0:
        raise ValueError("Difficulty must be non-negative")
    target_prefix = '0' * difficulty
    nonce = start_nonce
    while True:
        if nonce % check_interval == 0:
            if cancel is not None and cancel.is_set():
                raise MiningCancelled(f"Mining cancelled at nonce {nonce}")
            if on_progress is not None:
                on_progress(nonce)
            time.sleep(0)
        block_hash = generate_hash(header_prefix + msgpack.packb(nonce))
        if block_hash.hex().startswith(target_prefix):
            return block_hash, nonce
        nonce += 1
