"""
In-process responder engine.

Runs the same stages as the Spark engine on simulated partitions, for small
inputs, tests and dry runs without a cluster:

1. records are dealt round-robin into num_partitions input partitions
2. each partition routes its records with its own metrics
3. routed entries are shuffled by row; rows are dealt to partitions by
   row % num_partitions
4. each row partition builds its buckets (hit limiting) and aggregates them
5. column partials are reduced with the configured strategy
6. per-partition metrics are merged (integer addition) and the Response is
   assembled

Shared helpers (effective_query, run_stage, needs_exp_table) are used by
the Spark engine as well.
"""

import logging
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import dataclass, replace
from typing import Dict, Iterable, List, Optional

from core.config import ResponderConfig
from core.errors import ConfigurationError, StageError, StorageError
from core.metrics import ResponderMetrics, merge_all
from engine.column_reducer import reduce_partials_local
from engine.exp_table import ExpTable, ExpTableStore
from engine.row_aggregator import (
    ColumnPartial, DirectRowAggregator, PrecomputedJoinRowAggregator, make_row_aggregator
)
from reader.selector_router import RoutedEntry, SelectorRouter
from schema.query import Query
from schema.record import Record
from schema.response import Response
from writer.response_writer import ResponseAssembler


logger = logging.getLogger(__name__)


# Worker-side error types and the stage that raises them
_ERROR_STAGES = {
    "InvalidEmbeddingError": "selector_routing",
    "MissingTableEntryError": "row_aggregation",
    "ColumnOverflowError": "row_aggregation",
}


@contextmanager
def run_stage(name: str):
    """
    Re-raise failures of a stage as StageError naming the stage.

    Storage and configuration errors already name their boundary and pass
    through unchanged.
    """
    try:
        yield
    except (StorageError, ConfigurationError, StageError):
        raise
    except Exception as e:
        text = f"{type(e).__name__}: {e}"
        stage = next((s for err, s in _ERROR_STAGES.items() if err in text), name)
        raise StageError(stage, text) from e


class LocalBroadcast:
    """Stand-in for a Spark Broadcast: read-only holder exposing .value."""

    def __init__(self, value):
        self._value = value

    @property
    def value(self):
        return self._value


@dataclass
class ResponderRun:
    """Outcome of one responder computation."""
    response: Response
    metrics: ResponderMetrics
    table_source: Optional[str] = None  # 'computed', 'loaded' or None (no table)


def effective_query(query: Query, config: ResponderConfig) -> Query:
    """Apply configuration overrides to the QueryInfo before broadcasting."""
    info = query.query_info
    overrides = {}
    if config.limit_hits_per_selector is not None:
        overrides["limit_hits_per_selector"] = config.limit_hits_per_selector
    if config.max_hits_per_selector is not None:
        overrides["max_hits_per_selector"] = config.max_hits_per_selector
    if config.use_persisted_table and not info.use_exp_lookup_table:
        overrides["use_exp_lookup_table"] = True
    if not overrides:
        return query
    logger.info(f"QueryInfo overrides from configuration: {overrides}")
    result = replace(query, query_info=replace(info, **overrides))
    result.query_info.validate()
    return result


def needs_exp_table(query: Query, config: ResponderConfig) -> bool:
    return config.row_mode == PrecomputedJoinRowAggregator.mode or query.query_info.use_exp_lookup_table


class LocalResponder:
    """Computes a Response in-process over simulated partitions."""

    def __init__(self, query: Query, config: ResponderConfig, table_dir: Optional[str] = None):
        config.validate()
        query.validate()
        self.config = config
        self.query = effective_query(query, config)
        self.table_dir = table_dir
        if self.query.query_info.use_exp_lookup_table and not table_dir:
            raise ConfigurationError("A persisted exponentiation table needs exp_table_dir")

    def _partition_count(self, num_partitions: Optional[int]) -> int:
        return max(1, num_partitions or self.config.num_data_partitions)

    def _build_table(self) -> Optional[tuple]:
        if not needs_exp_table(self.query, self.config):
            return None
        persist = self.query.query_info.use_exp_lookup_table
        if persist:
            return ExpTableStore(self.table_dir).load_or_compute(self.query, persist=True)
        return ExpTable.compute(self.query), "computed"

    def compute(self, records: Iterable[Record], num_partitions: Optional[int] = None) -> ResponderRun:
        n = self._partition_count(num_partitions)
        query = self.query
        info = query.query_info
        query_ref = LocalBroadcast(query)

        logger.info("=" * 60)
        logger.info(f"Local responder: {n} partitions, row_mode={self.config.row_mode}, "
                    f"reduce_strategy={self.config.reduce_strategy}")
        logger.info("=" * 60)

        with run_stage("exp_table"):
            built = self._build_table()
        table: Optional[ExpTable] = built[0] if built else None
        table_source = built[1] if built else None

        # Route records partition by partition; records may be read lazily,
        # so parse failures surface here
        partition_metrics: List[ResponderMetrics] = []
        rows: Dict[int, List[RoutedEntry]] = defaultdict(list)
        with run_stage("selector_routing"):
            input_partitions: List[List[Record]] = [[] for _ in range(n)]
            for i, record in enumerate(records):
                input_partitions[i % n].append(record)

            for partition in input_partitions:
                metrics = ResponderMetrics()
                router = SelectorRouter(info, query.embedding, metrics)
                for record in partition:
                    routed = router.route(record)
                    if routed is not None:
                        row, entry = routed
                        rows[row].append(entry)
                partition_metrics.append(metrics)

        # Shuffle rows to row partitions, then aggregate
        row_partitions: List[List[int]] = [[] for _ in range(n)]
        for row in rows:
            row_partitions[row % n].append(row)

        partial_partitions: List[List[ColumnPartial]] = []
        with run_stage("row_aggregation"):
            for partition in row_partitions:
                metrics = ResponderMetrics()
                router = SelectorRouter(info, query.embedding, metrics)
                aggregator = make_row_aggregator(
                    self.config.row_mode, query_ref, metrics,
                    self.config.use_local_cache, self.config.local_cache_size
                )
                partials: List[ColumnPartial] = []
                for row in partition:
                    bucket = router.build_bucket(row, rows[row])
                    if isinstance(aggregator, DirectRowAggregator):
                        partials.extend(aggregator.aggregate(bucket))
                    else:
                        powers = table.powers_for(row) if table is not None else None
                        partials.extend(aggregator.aggregate(bucket, powers))
                partial_partitions.append(partials)
                partition_metrics.append(metrics)

        with run_stage("column_reduction"):
            column_values = reduce_partials_local(
                partial_partitions, query.n_squared, self.config.reduce_strategy
            )

        response = ResponseAssembler(info).assemble(column_values)
        metrics = merge_all(partition_metrics)
        logger.info(metrics.summary())
        return ResponderRun(response=response, metrics=metrics, table_source=table_source)
