import random

from hello_overlay.config import NONCE_POOL_CAPACITY


class NoncePool:
    """
    Recently used 32-bit nonces.

    `next()` never returns a value still held by the pool. When the pool is
    full it is emptied entirely, so a value issued before the reset may repeat.
    """

    def __init__(self, capacity: int = NONCE_POOL_CAPACITY, rng: random.Random | None = None):
        if capacity <= 0:
            raise ValueError(f"Nonce pool capacity must be positive: {capacity}")
        self.capacity = capacity
        self._rng = rng or random.SystemRandom()
        self._nonces: set[int] = set()

    def next(self) -> int:
        if len(self._nonces) >= self.capacity:
            self._nonces.clear()

        nonce = self._rng.getrandbits(32)
        while nonce in self._nonces:
            nonce = self._rng.getrandbits(32)

        self._nonces.add(nonce)
        return nonce

    def __len__(self):
        return len(self._nonces)

    def __contains__(self, nonce):
        return nonce in self._nonces
