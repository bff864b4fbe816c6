import random
import secrets
from typing import List, Sequence, TypeVar

T = TypeVar("T")


def new_seed() -> int:
    # Fits a signed BIGINT column
    return secrets.randbits(63)


def seeded_shuffle(items: Sequence[T], seed: int) -> List[T]:
    """
    Fisher-Yates shuffle driven by a per-attempt seed.

    The same seed always yields the same order, so a reload of an attempt
    shows the questions exactly as they were first dealt.
    """
    result = list(items)
    rng = random.Random(seed)
    for i in range(len(result) - 1, 0, -1):
        j = rng.randint(0, i)
        result[i], result[j] = result[j], result[i]
    return result
