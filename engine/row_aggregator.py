"""
Row Aggregator.

Turns one RowBucket into Column Partials (column_index, ciphertext).

A row's chunk vectors are laid end to end; the j-th chunk of that sequence
belongs to column j. For each column the row's contribution is the product,
mod N^2, of base_row^chunk over the chunks that belong to it, where base_row
is the query element whose index equals the row index.

STRATEGIES (selected by responder.row_mode, numerically identical):
- direct: base_row^chunk computed inline, optionally through the per-process
  on-demand cache
- precomputed_join: base_row^chunk read from the exponentiation table that
  was joined to the bucket by element index; a missing element or power is
  a fatal MissingTableEntryError

Both are plain callables so Spark can ship them to workers in a flatMap.
"""

import logging
from typing import Callable, Dict, List, Mapping, Optional, Tuple

from core import metrics as m
from core.errors import ColumnOverflowError, MissingTableEntryError
from core.modexp import IDENTITY, get_process_cache, mod_pow, multiply_mod
from reader.selector_router import RowBucket


logger = logging.getLogger(__name__)


ColumnPartial = Tuple[int, int]


def compute_row_partials(
    bucket: RowBucket,
    num_columns: int,
    modulus: int,
    exp_fn: Callable[[int], int]
) -> List[ColumnPartial]:
    """
    Column partials of one row, ascending by column.

    exp_fn maps a chunk value to base_row^chunk mod N^2.
    """
    products: Dict[int, int] = {}
    column = 0
    for chunks in bucket.chunk_vectors:
        for chunk in chunks:
            if column >= num_columns:
                raise ColumnOverflowError(bucket.row_index, column, num_columns)
            products[column] = multiply_mod(products.get(column, IDENTITY), exp_fn(chunk), modulus)
            column += 1
    return sorted(products.items())


class RowAggregator:
    """Common plumbing: broadcast query access and metrics."""

    mode = ""

    def __init__(self, query_bcast, metrics):
        self.query_bcast = query_bcast
        self.metrics = metrics

    @property
    def query(self):
        return self.query_bcast.value

    def _record(self, partials: List[ColumnPartial]) -> List[ColumnPartial]:
        self.metrics.add(m.ROWS_AGGREGATED)
        self.metrics.add(m.COLUMN_PARTIALS, len(partials))
        return partials


class DirectRowAggregator(RowAggregator):
    """Computes modular exponentiations inline; needs no materialized table."""

    mode = "direct"

    def __init__(self, query_bcast, metrics, use_local_cache: bool = True, cache_size: int = 100_000):
        super().__init__(query_bcast, metrics)
        self.use_local_cache = use_local_cache
        self.cache_size = cache_size

    def aggregate(self, bucket: RowBucket) -> List[ColumnPartial]:
        query = self.query
        base = query.element(bucket.row_index)
        modulus = query.n_squared

        if self.use_local_cache:
            cache = get_process_cache(self.cache_size)

            def exp_fn(power: int) -> int:
                return cache.get(base, power, modulus)
        else:
            def exp_fn(power: int) -> int:
                return mod_pow(base, power, modulus)

        partials = compute_row_partials(bucket, query.query_info.num_columns, modulus, exp_fn)
        return self._record(partials)

    def __call__(self, bucket: RowBucket) -> List[ColumnPartial]:
        return self.aggregate(bucket)


class PrecomputedJoinRowAggregator(RowAggregator):
    """Reads every power from the row's slice of the exponentiation table."""

    mode = "precomputed_join"

    def aggregate(self, bucket: RowBucket, powers: Optional[Mapping[int, int]]) -> List[ColumnPartial]:
        if powers is None:
            raise MissingTableEntryError(bucket.row_index)
        query = self.query

        def exp_fn(power: int) -> int:
            value = powers.get(power)
            if value is None:
                raise MissingTableEntryError(bucket.row_index, power)
            return value

        partials = compute_row_partials(bucket, query.query_info.num_columns, query.n_squared, exp_fn)
        return self._record(partials)

    def __call__(self, joined) -> List[ColumnPartial]:
        """Spark entry point: (row, (bucket, [(power, value), ...] or None))."""
        _, (bucket, power_list) = joined
        powers = dict(power_list) if power_list is not None else None
        return self.aggregate(bucket, powers)


def make_row_aggregator(row_mode: str, query_bcast, metrics, use_local_cache: bool = True,
                        cache_size: int = 100_000) -> RowAggregator:
    if row_mode == DirectRowAggregator.mode:
        return DirectRowAggregator(query_bcast, metrics, use_local_cache, cache_size)
    if row_mode == PrecomputedJoinRowAggregator.mode:
        return PrecomputedJoinRowAggregator(query_bcast, metrics)
    raise ValueError(f"Unknown row mode: {row_mode}")
