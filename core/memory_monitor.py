"""
Memory monitoring for the responder.

Logs driver memory at pipeline checkpoints and estimates the footprint of
the exponentiation table before it is built. The table holds
num_rows x 2^chunk_bit_size ciphertexts of |N^2| bits each and is the
largest object a run materializes.
"""

import logging
from typing import Any, Dict, Optional

import psutil

from engine.exp_table import estimate_table_bytes
from schema.query import Query


logger = logging.getLogger(__name__)


class MemoryMonitor:
    """Tracks driver memory (psutil) and optional Spark executor settings."""

    def __init__(self, spark=None):
        """
        Initialize memory monitor.

        Args:
            spark: Active Spark session, or None for the in-process engine
        """
        self.spark = spark
        self._checkpoints: Dict[str, Dict[str, Any]] = {}

    def log_driver_memory(self, label: str) -> Dict[str, Any]:
        """
        Log current driver memory usage.

        Args:
            label: Description of current checkpoint

        Returns:
            Dict with memory statistics (GB and %)
        """
        vm = psutil.virtual_memory()
        stats = {
            'label': label,
            'used_gb': vm.used / (1024**3),
            'total_gb': vm.total / (1024**3),
            'percent': vm.percent,
            'available_gb': vm.available / (1024**3),
        }

        logger.info(
            f"[DRIVER MEMORY] {label}: "
            f"{stats['used_gb']:.2f}/{stats['total_gb']:.2f} GB ({stats['percent']:.1f}%), "
            f"available={stats['available_gb']:.2f} GB"
        )

        self._checkpoints[label] = stats
        return stats

    def log_exp_table_estimate(self, query: Query) -> float:
        """Log the estimated table size in GB and warn when it exceeds free driver memory."""
        estimated_gb = estimate_table_bytes(query) / (1024**3)
        available_gb = psutil.virtual_memory().available / (1024**3)
        logger.info(
            f"[EXP TABLE] ~{estimated_gb:.3f} GB for {len(query.elements):,} elements x "
            f"{query.embedding.max_chunk_value + 1:,} powers"
        )
        if self.spark is None and estimated_gb > available_gb:
            logger.warning(
                f"Exponentiation table (~{estimated_gb:.2f} GB) exceeds available driver memory "
                f"({available_gb:.2f} GB); use row_mode=direct or the Spark engine"
            )
        return estimated_gb

    def log_spark_settings(self, label: str) -> Optional[Dict[str, Any]]:
        """Log executor count and memory settings of the active Spark context."""
        if self.spark is None:
            return None
        sc = self.spark.sparkContext
        conf = sc.getConf()
        stats = {
            'label': label,
            'app_id': sc.applicationId,
            'master': sc.master,
            'default_parallelism': sc.defaultParallelism,
            'executor_memory': conf.get('spark.executor.memory', 'unknown'),
            'driver_memory': conf.get('spark.driver.memory', 'unknown'),
        }
        logger.info(
            f"[SPARK] {label}: master={stats['master']}, "
            f"parallelism={stats['default_parallelism']}, "
            f"executor_mem={stats['executor_memory']}, driver_mem={stats['driver_memory']}"
        )
        return stats

    def summary(self) -> str:
        """
        Generate summary of all checkpoints.

        Returns:
            Formatted summary string
        """
        if not self._checkpoints:
            return "No memory checkpoints recorded"

        lines = [
            "=" * 60,
            "Memory Monitoring Summary",
            "=" * 60,
            ""
        ]

        for label, stats in self._checkpoints.items():
            lines.append(f"{label}:")
            lines.append(f"  Used: {stats['used_gb']:.2f} GB ({stats['percent']:.1f}%)")
            lines.append(f"  Available: {stats['available_gb']:.2f} GB")
            lines.append("")

        lines.append("=" * 60)
        return "\n".join(lines)
