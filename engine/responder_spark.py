"""
Spark responder engine.

RDD pipeline:

    records --map(route)--> (row, (selector, chunks))
            --groupByKey(num_data_partitions)--> (row, entries)
            --map(build_bucket)--> (row, RowBucket)            [hit limiting]
            --[leftOuterJoin(exp table)]--flatMap(aggregate)--> (column, value)
            --reduceByKey | groupByKey(num_col_mult_partitions)--> (column, product)
            --collectAsMap--> Response

The Query is broadcast once; the router and aggregators only reach it
through the broadcast. Metrics are Spark accumulators, read on the driver
after the final action.

NOTE: rdd.count() calls are deliberately absent from the pipeline; every
count is a full Spark job. Use the metrics summary instead.
"""

import logging
from functools import partial
from typing import Iterable, Tuple

from pyspark import RDD
from pyspark.sql import SparkSession

from core.config import Config
from core.errors import ConfigurationError
from core.spark_metrics import SparkMetrics
from engine.column_reducer import reduce_columns_spark
from engine.exp_table import SparkExpTableBuilder
from engine.responder import ResponderRun, effective_query, needs_exp_table, run_stage
from engine.row_aggregator import PrecomputedJoinRowAggregator, make_row_aggregator
from reader.selector_router import RoutedEntry, RowBucket, SelectorRouter
from schema.query import Query
from writer.response_writer import ResponseAssembler


logger = logging.getLogger(__name__)


def _is_routed(item) -> bool:
    return item is not None


def _build_bucket(item: Tuple[int, Iterable[RoutedEntry]], router: SelectorRouter) -> Tuple[int, RowBucket]:
    row, entries = item
    return row, router.build_bucket(row, entries)


class SparkResponder:
    """Computes a Response from an RDD of Records."""

    def __init__(self, spark: SparkSession, query: Query, config: Config):
        config.responder.validate()
        query.validate()
        self.spark = spark
        self.config = config
        self.query = effective_query(query, config.responder)
        if self.query.query_info.use_exp_lookup_table and not (config.data.exp_table_dir or config.data.output_path):
            raise ConfigurationError("A persisted exponentiation table needs exp_table_dir or output_path")

    def compute(self, records: RDD) -> ResponderRun:
        sc = self.spark.sparkContext
        rc = self.config.responder
        query = self.query
        info = query.query_info
        num_data_partitions = rc.num_data_partitions
        num_col_partitions = rc.effective_col_mult_partitions

        logger.info("=" * 60)
        logger.info(f"Spark responder: row_mode={rc.row_mode}, reduce_strategy={rc.reduce_strategy}")
        logger.info(f"  data partitions={num_data_partitions}, column partitions={num_col_partitions}")
        logger.info(f"  hit limit: {info.limit_hits_per_selector} (max {info.max_hits_per_selector})")
        logger.info("=" * 60)

        query_bcast = sc.broadcast(query)
        metrics = SparkMetrics(sc)

        # Exponentiation table (computed in parallel or loaded when persisted)
        table_rdd = None
        builder = None
        if needs_exp_table(query, rc):
            builder = SparkExpTableBuilder(
                sc, query, query_bcast,
                table_dir=self.config.data.effective_exp_table_dir,
                persist=info.use_exp_lookup_table,
                num_partitions=num_data_partitions,
            )
            with run_stage("exp_table"):
                table_rdd = builder.build()

        # Hash selectors to rows and group by row
        router = SelectorRouter(info, query.embedding, metrics)
        row_buckets = (
            records.map(router.route)
            .filter(_is_routed)
            .groupByKey(num_data_partitions)
            .map(partial(_build_bucket, router=router))
        )

        # Encrypted row values: emit (column, value) for each row
        aggregator = make_row_aggregator(
            rc.row_mode, query_bcast, metrics, rc.use_local_cache, rc.local_cache_size
        )
        if aggregator.mode == PrecomputedJoinRowAggregator.mode:
            partials = row_buckets.leftOuterJoin(table_rdd, num_data_partitions).flatMap(aggregator)
        else:
            partials = row_buckets.values().flatMap(aggregator)

        # Multiply the column values by column index
        columns = reduce_columns_spark(partials, query.n_squared, rc.reduce_strategy, num_col_partitions)

        with run_stage("column_reduction"):
            column_values = columns.collectAsMap()
        logger.info(f"Collected {len(column_values)} non-empty columns")

        response = ResponseAssembler(info).assemble(column_values)

        if table_rdd is not None:
            table_rdd.unpersist()
        query_bcast.unpersist()

        run_metrics = metrics.snapshot()
        logger.info(run_metrics.summary())
        return ResponderRun(
            response=response,
            metrics=run_metrics,
            table_source=builder.source if builder else None,
        )
