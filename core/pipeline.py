"""
Responder Pipeline Orchestration.

This module coordinates one PIR response computation:
1. Load the encrypted query
2. Read the records
3. Compute the response (local or Spark engine)
4. Write the response

The run is all or nothing: any failure propagates to the caller and no
response file is written.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Any, Optional

from core.config import Config
from core.hadoop_fs import has_scheme
from core.memory_monitor import MemoryMonitor
from core.metrics import ResponderMetrics
from schema.query import Query, QueryStore
from writer.response_writer import ResponseStore


logger = logging.getLogger(__name__)


@dataclass
class PipelineResult:
    """Result of a pipeline execution."""
    success: bool
    query_id: str = ""
    num_columns: int = 0
    output_path: str = ""
    table_source: Optional[str] = None
    metrics: ResponderMetrics = field(default_factory=ResponderMetrics)
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "success": self.success,
            "query_id": self.query_id,
            "num_columns": self.num_columns,
            "output_path": self.output_path,
            "table_source": self.table_source,
            "metrics": self.metrics.counters(),
            "duration_seconds": (
                (self.end_time - self.start_time).total_seconds()
                if self.start_time and self.end_time else None
            ),
        }


class ResponderPipeline:
    """
    Main pipeline for computing a PIR response.

    The pipeline follows these steps:
    1. Validate configuration (before anything else starts)
    2. Initialize Spark session (spark engine only; Hadoop URIs need it)
    3. Load the query and apply configuration overrides
    4. Read records
    5. Route, aggregate rows, reduce columns
    6. Assemble and store the response
    """

    def __init__(self, config: Config):
        """
        Initialize pipeline.

        Args:
            config: Configuration object
        """
        self.config = config
        self._spark = None
        self._spark_created_by_pipeline = False

    def _init_spark(self):
        """Initialize Spark session, reusing an active one (e.g. from a notebook)."""
        if self._spark is not None:
            return self._spark

        from pyspark.sql import SparkSession

        existing_session = SparkSession.getActiveSession()
        if existing_session is not None:
            logger.info(f"Reusing existing Spark session (master={existing_session.sparkContext.master})")
            self._spark = existing_session
            self._spark_created_by_pipeline = False
            return self._spark

        desired_master = self.config.spark.master or "local[*]"
        logger.info(f"Initializing Spark session (master={desired_master})...")

        builder = SparkSession.builder.appName(self.config.spark.app_name).master(desired_master)
        for key, value in self.config.spark.to_spark_conf().items():
            if key != "spark.app.name":  # Already set
                builder = builder.config(key, value)

        self._spark = builder.getOrCreate()
        self._spark_created_by_pipeline = True

        sc = self._spark.sparkContext
        logger.info(f"Spark session initialized: {sc.appName}")
        logger.info(f"Spark master: {sc.master}")
        logger.info(f"Spark default parallelism: {sc.defaultParallelism}")
        return self._spark

    def _storage_context(self):
        """SparkContext for Hadoop URI paths; None on the local engine."""
        return self._spark.sparkContext if self._spark is not None else None

    def load_query(self) -> Query:
        return QueryStore(self._storage_context()).load(self.config.data.query_path)

    def run(self) -> PipelineResult:
        """
        Execute the full responder pipeline.

        Returns:
            PipelineResult of the successful run

        Raises:
            ConfigurationError, StorageError, StageError: the run failed
        """
        result = PipelineResult(success=False)
        result.start_time = datetime.now()

        self.config.validate()

        try:
            if self.config.responder.engine == "spark":
                # The query may live on a Hadoop filesystem
                self._init_spark()

            # Step 1: Query
            logger.info("=" * 60)
            logger.info("Step 1: Loading query")
            logger.info("=" * 60)
            query = self.load_query()
            result.query_id = query.query_info.identifier

            if self.config.responder.engine == "local":
                run = self._run_local(query)
            else:
                run = self._run_spark(query)

            # Step 4: Write output
            logger.info("=" * 60)
            logger.info("Step 4: Writing response")
            logger.info("=" * 60)
            ResponseStore(self._storage_context()).store(self.config.data.output_path, run.response)

            result.success = True
            result.num_columns = run.response.num_columns
            result.output_path = self.config.data.output_path
            result.table_source = run.table_source
            result.metrics = run.metrics

            logger.info("Pipeline completed successfully")

        except Exception as e:
            logger.error(f"Pipeline failed: {e}")
            raise

        finally:
            result.end_time = datetime.now()

            # Only stop Spark session if we created it (not if we reused existing one)
            if self._spark is not None and self._spark_created_by_pipeline:
                logger.info("Stopping Spark session created by pipeline...")
                self._spark.stop()
                self._spark = None

        return result

    def _run_local(self, query: Query):
        from engine.responder import LocalResponder
        from reader.record_reader import read_records_jsonl

        monitor = MemoryMonitor()
        monitor.log_driver_memory("start")
        if self.config.data.input_format != "json":
            logger.warning(
                f"Local engine reads JSON lines only; ignoring input_format={self.config.data.input_format}"
            )

        responder = LocalResponder(
            query, self.config.responder, table_dir=self.config.data.effective_exp_table_dir
        )
        if responder.query.query_info.use_exp_lookup_table or self.config.responder.row_mode == "precomputed_join":
            monitor.log_exp_table_estimate(responder.query)

        logger.info("=" * 60)
        logger.info("Step 2-3: Reading records and computing response (local engine)")
        logger.info("=" * 60)
        records = read_records_jsonl(
            self.config.data.input_path, responder.query.embedding, self.config.columns
        )
        run = responder.compute(records)
        monitor.log_driver_memory("response computed")
        logger.info(monitor.summary())
        return run

    def _run_spark(self, query: Query):
        spark = self._init_spark()

        # Import components (after Spark init)
        from engine.responder_spark import SparkResponder
        from reader.record_reader import SparkRecordReader

        monitor = MemoryMonitor(spark)
        monitor.log_spark_settings("start")
        monitor.log_driver_memory("start")

        responder = SparkResponder(spark, query, self.config)
        if responder.query.query_info.use_exp_lookup_table or self.config.responder.row_mode == "precomputed_join":
            monitor.log_exp_table_estimate(responder.query)

        logger.info("=" * 60)
        logger.info("Step 2: Reading records")
        logger.info("=" * 60)
        reader = SparkRecordReader(spark, self.config, responder.query.embedding)
        records = reader.read(self.config.responder.num_data_partitions)

        logger.info("=" * 60)
        logger.info("Step 3: Computing response")
        logger.info("=" * 60)
        run = responder.compute(records)
        monitor.log_driver_memory("response computed")
        logger.info(monitor.summary())
        return run

    def validate(self) -> bool:
        """
        Validate configuration and query without running the pipeline.

        Returns:
            True if configuration is valid

        Raises:
            ConfigurationError, StorageError, FileNotFoundError
        """
        import os

        self.config.validate()
        if has_scheme(self.config.data.query_path):
            self._init_spark()
        try:
            query = self.load_query()
        finally:
            if self._spark is not None and self._spark_created_by_pipeline:
                self._spark.stop()
                self._spark = None
        if not has_scheme(self.config.data.input_path) and not os.path.exists(self.config.data.input_path):
            raise FileNotFoundError(f"Input not found: {self.config.data.input_path}")
        logger.info(f"Validation passed for query {query.query_info.identifier}")
        return True
