"""
Column Reducer.

Folds every Column Partial of a query into one ciphertext per column with
multiplication mod N^2 (identity 1). Multiplication is commutative and
associative, so the result depends only on the multiset of partials, not on
their order or on how they are partitioned.

STRATEGIES (selected by responder.reduce_strategy):
- reduce_by_key: fold while shuffling; each partition combines its own
  partials per column first, the per-partition results are then combined
- group_by_key: shuffle all partials of a column to one place, then fold
  them sequentially

Columns without partials are absent here; the Response Assembler fills
them with the identity.
"""

import logging
from collections import defaultdict
from functools import partial
from typing import Dict, Iterable, List

from core.modexp import IDENTITY, multiply_mod, product_mod
from engine.row_aggregator import ColumnPartial


logger = logging.getLogger(__name__)


REDUCE_BY_KEY = "reduce_by_key"
GROUP_BY_KEY = "group_by_key"


def fold_column(values: Iterable[int], modulus: int) -> int:
    return product_mod(values, modulus)


def combine_partition(partials: Iterable[ColumnPartial], modulus: int) -> Dict[int, int]:
    """Map-side combine of one partition."""
    combined: Dict[int, int] = {}
    for column, value in partials:
        combined[column] = multiply_mod(combined.get(column, IDENTITY), value, modulus)
    return combined


def reduce_by_key_local(partitions: Iterable[Iterable[ColumnPartial]], modulus: int) -> Dict[int, int]:
    result: Dict[int, int] = {}
    for partition in partitions:
        for column, value in combine_partition(partition, modulus).items():
            result[column] = multiply_mod(result.get(column, IDENTITY), value, modulus)
    return result


def group_by_key_local(partitions: Iterable[Iterable[ColumnPartial]], modulus: int) -> Dict[int, int]:
    groups: Dict[int, List[int]] = defaultdict(list)
    for partition in partitions:
        for column, value in partition:
            groups[column].append(value)
    return {column: fold_column(values, modulus) for column, values in groups.items()}


def reduce_partials_local(
    partitions: Iterable[Iterable[ColumnPartial]],
    modulus: int,
    strategy: str
) -> Dict[int, int]:
    """In-process reduction over simulated partitions."""
    if strategy == REDUCE_BY_KEY:
        return reduce_by_key_local(partitions, modulus)
    if strategy == GROUP_BY_KEY:
        return group_by_key_local(partitions, modulus)
    raise ValueError(f"Unknown reduce strategy: {strategy}")


def _fold_group(values, modulus: int) -> int:
    return fold_column(values, modulus)


def reduce_columns_spark(partials_rdd, modulus: int, strategy: str, num_partitions: int):
    """RDD[(column, value)] -> RDD[(column, folded value)], one entry per column."""
    if strategy == REDUCE_BY_KEY:
        return partials_rdd.reduceByKey(partial(multiply_mod, modulus=modulus), num_partitions)
    if strategy == GROUP_BY_KEY:
        return partials_rdd.groupByKey(num_partitions).mapValues(partial(_fold_group, modulus=modulus))
    raise ValueError(f"Unknown reduce strategy: {strategy}")
