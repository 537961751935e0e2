"""
seeds.py

Per-job seed generation. The generator is owned by whichever process
dispatches jobs (pool driver or MPI governor) and is passed around
explicitly.
"""

from typing import Optional

import numpy as np

SEED_MIN = 1
SEED_MAX = 100_000_000


def auto_seed() -> int:
    """Pick a run seed from OS entropy when the user did not give one."""
    return int(np.random.default_rng().integers(SEED_MIN, SEED_MAX, endpoint=True))


class SeedGenerator:
    def __init__(self, seed: Optional[int] = None):
        self.seed = auto_seed() if seed is None else int(seed)
        self._rng = np.random.default_rng(self.seed)

    def draw(self) -> int:
        return int(self._rng.integers(SEED_MIN, SEED_MAX, endpoint=True))

    def warm(self) -> None:
        # One value drawn and thrown away; callers rely on the exact draw count.
        self._rng.integers(SEED_MIN, SEED_MAX, endpoint=True)
