import random


def compute_backoff_seconds(attempt: int, base: float = 0.1, cap: float = 2.0) -> float:
    # exponential backoff with jitter, attempt is 1-based
    exp = min(cap, base * (2 ** max(0, attempt - 1)))
    jitter = random.uniform(0, exp / 3)
    return exp + jitter
