#!/usr/bin/env python3
"""
PIR Responder - Main Entry Point
================================
Command-line interface for computing the encrypted response to a PIR query.

Usage:
    python main.py --config configs/default.ini
    python main.py --config configs/default.ini --engine local --output results/response.json
"""

import argparse
import logging
import logging.handlers
import sys
import os
from datetime import datetime
from typing import Optional

from core.config import Config
from core.errors import ConfigurationError, StageError, StorageError
from core.pipeline import ResponderPipeline


def setup_logging(
    log_level: str = "INFO",
    log_file: Optional[str] = None,
    log_dir: str = "logs"
) -> logging.Logger:
    """
    Set up logging with console and optional file output.

    Module loggers (core.*, engine.*, ...) propagate to the root logger, so
    handlers are attached there.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_file: Optional log file name. If None, auto-generated.
        log_dir: Directory for log files

    Returns:
        Configured logger instance
    """
    root = logging.getLogger()
    root.setLevel(getattr(logging, log_level.upper()))

    # Console handler
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(getattr(logging, log_level.upper()))
    console_format = logging.Formatter(
        '%(asctime)s [%(levelname)s] %(message)s',
        datefmt='%H:%M:%S'
    )
    console_handler.setFormatter(console_format)
    root.addHandler(console_handler)

    # py4j logs every gateway call at DEBUG
    logging.getLogger("py4j").setLevel(logging.WARNING)

    logger = logging.getLogger("pir_responder")

    # File handler (rotating)
    if log_file or log_dir:
        os.makedirs(log_dir, exist_ok=True)
        if log_file is None:
            timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
            log_file = f"pir_responder_{timestamp}.log"

        log_path = os.path.join(log_dir, log_file)
        file_handler = logging.handlers.RotatingFileHandler(
            log_path,
            maxBytes=10*1024*1024,  # 10MB
            backupCount=5,
            encoding='utf-8'
        )
        file_handler.setLevel(logging.DEBUG)
        file_format = logging.Formatter(
            '%(asctime)s [%(levelname)s] %(name)s:%(lineno)d - %(message)s'
        )
        file_handler.setFormatter(file_format)
        root.addHandler(file_handler)
        logger.info(f"Logging to file: {log_path}")

    return logger


def parse_args(argv=None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description="PIR Responder - Compute the encrypted response to a PIR query",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Run with config file
    python main.py --config configs/default.ini

    # Small run without a cluster
    python main.py --config configs/default.ini --engine local

    # Specify input/query/output
    python main.py --config configs/default.ini \\
        --input data/records.json \\
        --query data/query.json \\
        --output results/response.json
        """
    )

    # Required arguments
    parser.add_argument(
        "--config", "-c",
        required=True,
        help="Path to configuration INI file"
    )

    # Optional overrides
    parser.add_argument(
        "--input", "-i",
        type=str,
        default=None,
        help="Override input records path"
    )

    parser.add_argument(
        "--query", "-q",
        type=str,
        default=None,
        help="Override query file path"
    )

    parser.add_argument(
        "--output", "-o",
        type=str,
        default=None,
        help="Override response output path"
    )

    parser.add_argument(
        "--engine",
        choices=["local", "spark"],
        default=None,
        help="Override execution engine"
    )

    # Logging options
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="INFO",
        help="Logging level (default: INFO)"
    )

    parser.add_argument(
        "--log-dir",
        type=str,
        default="logs",
        help="Directory for log files (default: logs/)"
    )

    # Execution options
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Validate configuration and query, then exit without running"
    )

    parser.add_argument(
        "--spark-master",
        type=str,
        default=None,
        help="Override Spark master URL (e.g., 'local[*]', 'spark://host:7077')"
    )

    return parser.parse_args(argv)


def apply_overrides(config: Config, args: argparse.Namespace) -> Config:
    """Apply command-line overrides to configuration."""
    if args.input is not None:
        config.data.input_path = args.input

    if args.query is not None:
        config.data.query_path = args.query

    if args.output is not None:
        config.data.output_path = args.output

    if args.engine is not None:
        config.responder.engine = args.engine

    if args.spark_master is not None:
        config.spark.master = args.spark_master

    return config


def print_config_summary(config: Config, logger: logging.Logger):
    """Print configuration summary."""
    rc = config.responder
    logger.info("=" * 60)
    logger.info("Configuration Summary")
    logger.info("=" * 60)
    logger.info(f"Engine:                   {rc.engine}")
    logger.info(f"Row Mode:                 {rc.row_mode}")
    logger.info(f"Reduce Strategy:          {rc.reduce_strategy}")
    logger.info(f"Data Partitions:          {rc.num_data_partitions}")
    logger.info(f"Column Partitions:        {rc.effective_col_mult_partitions}")
    logger.info(f"Hit Limit Override:       {rc.limit_hits_per_selector} (max {rc.max_hits_per_selector})")
    logger.info(f"Persisted Exp Table:      {rc.use_persisted_table}")
    logger.info(f"Input Path:               {config.data.input_path} ({config.data.input_format})")
    logger.info(f"Query Path:               {config.data.query_path}")
    logger.info(f"Output Path:              {config.data.output_path}")
    logger.info(f"Exp Table Dir:            {config.data.effective_exp_table_dir}")
    logger.info(f"Spark Master:             {config.spark.master}")
    logger.info("=" * 60)


def main(argv=None) -> int:
    """
    Main entry point.

    Returns:
        Exit code (0 for success, 1 for configuration or storage errors,
        2 for any other failure)
    """
    # Parse arguments
    args = parse_args(argv)

    # Set up logging
    logger = setup_logging(
        log_level=args.log_level,
        log_dir=args.log_dir
    )

    try:
        # Load configuration
        logger.info(f"Loading configuration from: {args.config}")
        config = Config.from_ini(args.config)

        # Apply command-line overrides
        config = apply_overrides(config, args)

        # Validate configuration
        logger.info("Validating configuration...")
        config.validate()

        # Print summary
        print_config_summary(config, logger)

        pipeline = ResponderPipeline(config)

        # Dry run check
        if args.dry_run:
            pipeline.validate()
            logger.info("Dry run mode - exiting without processing")
            return 0

        logger.info("Starting response computation...")
        result = pipeline.run()
        summary = result.to_dict()

        logger.info("=" * 60)
        logger.info("Processing Complete")
        logger.info("=" * 60)
        logger.info(f"Query:                    {summary['query_id']}")
        logger.info(f"Duration:                 {summary['duration_seconds']:.2f} seconds")
        logger.info(f"Response Columns:         {summary['num_columns']}")
        logger.info(f"Exp Table:                {summary['table_source'] or 'not used'}")
        logger.info(f"Output Path:              {summary['output_path']}")
        logger.info(f"Records Kept:             {summary['metrics'].get('records_kept', 0)}")
        logger.info("=" * 60)

        return 0

    except FileNotFoundError as e:
        logger.error(f"File not found: {e}")
        return 1
    except StorageError as e:
        logger.error(f"Storage error: {e}")
        return 1
    except (ConfigurationError, ValueError) as e:
        logger.error(f"Configuration error: {e}")
        return 1
    except StageError as e:
        logger.error(f"Stage '{e.stage}' failed: {e.message}")
        return 2
    except Exception as e:
        logger.exception(f"Unexpected error: {e}")
        return 2


if __name__ == "__main__":
    sys.exit(main())
