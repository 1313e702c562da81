"""
Modular arithmetic over ciphertexts.

All values live in Z*_{N^2}. Multiplying two ciphertexts mod N^2 adds the
underlying plaintexts, so the only combination operator used anywhere in
the responder is multiplication mod N^2 (identity 1).
"""

import logging
from collections import OrderedDict
from typing import Iterable, Tuple


logger = logging.getLogger(__name__)


IDENTITY = 1


def mod_pow(base: int, exponent: int, modulus: int) -> int:
    """
    Square-and-multiply modular exponentiation.

    Python's three-argument pow() runs the same left-to-right binary method
    over arbitrary-precision ints.
    """
    if exponent < 0:
        raise ValueError(f"exponent must be >= 0, got {exponent}")
    return pow(base, exponent, modulus)


def mod_pow_naive(base: int, exponent: int, modulus: int) -> int:
    """Repeated modular multiplication. Reference for mod_pow, O(exponent)."""
    result = IDENTITY % modulus
    for _ in range(exponent):
        result = (result * base) % modulus
    return result


def multiply_mod(left: int, right: int, modulus: int) -> int:
    """Homomorphic combination of two ciphertexts."""
    return (left * right) % modulus


def product_mod(values: Iterable[int], modulus: int) -> int:
    """Fold values with multiplication mod modulus, starting from 1."""
    result = IDENTITY
    for value in values:
        result = (result * value) % modulus
    return result


class ModPowCache:
    """
    Per-process LRU cache of base^power mod N^2.

    Used by the on-demand exponentiation mode: each worker process fills it
    lazily and reuses entries for the rest of the run. Nothing is persisted.
    """

    def __init__(self, max_entries: int = 100_000):
        if max_entries < 1:
            raise ValueError(f"max_entries must be >= 1, got {max_entries}")
        self.max_entries = max_entries
        self._entries: "OrderedDict[Tuple[int, int, int], int]" = OrderedDict()
        self.hits = 0
        self.misses = 0

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, base: int, power: int, modulus: int) -> int:
        key = (base, power, modulus)
        value = self._entries.get(key)
        if value is not None:
            self._entries.move_to_end(key)
            self.hits += 1
            return value

        self.misses += 1
        value = mod_pow(base, power, modulus)
        self._entries[key] = value
        if len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)
        return value


# One cache per Python worker process; Spark reuses workers across tasks.
_process_caches = {}


def get_process_cache(max_entries: int) -> ModPowCache:
    """Return this process's cache for the given size, creating it on first use."""
    cache = _process_caches.get(max_entries)
    if cache is None:
        cache = ModPowCache(max_entries)
        _process_caches[max_entries] = cache
        logger.debug(f"Created process mod-pow cache (max_entries={max_entries})")
    return cache
