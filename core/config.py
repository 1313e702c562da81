"""
Configuration management for the PIR responder.
Handles loading, validation, and access to configuration parameters.

All configuration errors are raised by validate() (or while parsing the
INI file), before any Spark session or distributed work is started.
"""

import configparser
import os
import logging
from dataclasses import dataclass, field
from typing import Dict, Optional

from core.errors import ConfigurationError


logger = logging.getLogger(__name__)


ROW_MODES = ('direct', 'precomputed_join')
REDUCE_STRATEGIES = ('reduce_by_key', 'group_by_key')
ENGINES = ('spark', 'local')
INPUT_FORMATS = ('json', 'parquet', 'csv')


@dataclass
class ResponderConfig:
    """Aggregation settings."""

    engine: str = "spark"  # 'spark' or 'local' (in-process, small inputs)

    # Partitioning
    num_data_partitions: int = 1000
    num_col_mult_partitions: Optional[int] = None  # Defaults to num_data_partitions

    # Hit limiting (None = take the value from the query's QueryInfo)
    limit_hits_per_selector: Optional[bool] = None
    max_hits_per_selector: Optional[int] = None

    # Row computation and column reduction strategies
    row_mode: str = "direct"  # 'direct' or 'precomputed_join'
    reduce_strategy: str = "group_by_key"  # 'reduce_by_key' or 'group_by_key'

    # Exponentiation table
    use_persisted_table: bool = False  # Persist/reuse table keyed by query hash
    use_local_cache: bool = True  # On-demand per-process cache in direct mode
    local_cache_size: int = 100_000

    @property
    def effective_col_mult_partitions(self) -> int:
        return self.num_col_mult_partitions or self.num_data_partitions

    def validate(self) -> None:
        """Validate responder configuration."""
        if self.engine not in ENGINES:
            raise ConfigurationError(f"engine must be one of {ENGINES}, got {self.engine}")

        if self.num_data_partitions < 1:
            raise ConfigurationError(f"num_data_partitions must be >= 1, got {self.num_data_partitions}")

        if self.num_col_mult_partitions is not None and self.num_col_mult_partitions < 1:
            raise ConfigurationError(f"num_col_mult_partitions must be >= 1, got {self.num_col_mult_partitions}")

        if self.max_hits_per_selector is not None and self.max_hits_per_selector < 1:
            raise ConfigurationError(f"max_hits_per_selector must be >= 1, got {self.max_hits_per_selector}")

        if self.row_mode not in ROW_MODES:
            raise ConfigurationError(f"row_mode must be one of {ROW_MODES}, got {self.row_mode}")

        if self.reduce_strategy not in REDUCE_STRATEGIES:
            raise ConfigurationError(f"reduce_strategy must be one of {REDUCE_STRATEGIES}, got {self.reduce_strategy}")

        if self.local_cache_size < 1:
            raise ConfigurationError(f"local_cache_size must be >= 1, got {self.local_cache_size}")


@dataclass
class DataConfig:
    """Data locations."""
    input_path: str = ""
    input_format: str = "json"  # json (one object per line), parquet or csv
    query_path: str = ""
    output_path: str = ""
    exp_table_dir: str = ""  # Defaults to <output_path>_exp

    @property
    def effective_exp_table_dir(self) -> str:
        return self.exp_table_dir or f"{self.output_path}_exp"

    def validate(self) -> None:
        """Validate data configuration."""
        if not self.input_path:
            raise ConfigurationError("input_path must be specified")
        if not self.query_path:
            raise ConfigurationError("query_path must be specified")
        if not self.output_path:
            raise ConfigurationError("output_path must be specified")
        if self.input_format not in INPUT_FORMATS:
            raise ConfigurationError(f"input_format must be one of {INPUT_FORMATS}, got {self.input_format}")


@dataclass
class SparkConfig:
    """Spark-related configuration."""
    app_name: str = "SparkPIR"
    master: str = "local[*]"
    executor_memory: str = "4g"
    driver_memory: str = "2g"
    serializer: str = "org.apache.spark.serializer.KryoSerializer"
    memory_fraction: float = 0.25
    memory_storage_fraction: float = 0.10

    def to_spark_conf(self) -> Dict[str, str]:
        """Convert to Spark configuration dictionary."""
        return {
            "spark.app.name": self.app_name,
            "spark.executor.memory": self.executor_memory,
            "spark.driver.memory": self.driver_memory,
            "spark.serializer": self.serializer,
            "spark.memory.fraction": str(self.memory_fraction),
            "spark.memory.storageFraction": str(self.memory_storage_fraction),
        }

    def validate(self) -> None:
        if not 0 < self.memory_fraction <= 1:
            raise ConfigurationError(f"memory_fraction must be in (0, 1], got {self.memory_fraction}")
        if not 0 <= self.memory_storage_fraction <= 1:
            raise ConfigurationError(
                f"memory_storage_fraction must be in [0, 1], got {self.memory_storage_fraction}"
            )


def _default_columns() -> Dict[str, str]:
    return {
        "selector": "selector",
        "keep": "keep",
        "chunks": "chunks",
        "value": "value",
    }


# Recognized keys per INI section; anything else is a configuration error
_KNOWN_KEYS = {
    'responder': {
        'engine', 'num_data_partitions', 'num_col_mult_partitions',
        'limit_hits_per_selector', 'max_hits_per_selector', 'row_mode',
        'reduce_strategy', 'use_persisted_table', 'use_local_cache', 'local_cache_size',
    },
    'data': {'input_path', 'input_format', 'query_path', 'output_path', 'exp_table_dir'},
    'spark': {
        'app_name', 'master', 'executor_memory', 'driver_memory', 'serializer',
        'memory_fraction', 'memory_storage_fraction',
    },
    'columns': set(_default_columns()),
}


@dataclass
class Config:
    """Main configuration container."""
    responder: ResponderConfig = field(default_factory=ResponderConfig)
    data: DataConfig = field(default_factory=DataConfig)
    spark: SparkConfig = field(default_factory=SparkConfig)

    # Column mappings (maps internal names to source column names)
    columns: Dict[str, str] = field(default_factory=_default_columns)

    def validate(self) -> None:
        """Validate entire configuration."""
        self.responder.validate()
        self.data.validate()
        self.spark.validate()
        if self.responder.engine == "local":
            for name in ('input_path', 'query_path', 'output_path', 'exp_table_dir'):
                path = getattr(self.data, name)
                if "://" in path:
                    raise ConfigurationError(
                        f"{name}={path} is a Hadoop URI; the local engine reads and writes local paths only"
                    )
        missing = {'selector'} - set(self.columns)
        if missing:
            raise ConfigurationError(f"columns mapping is missing {sorted(missing)}")
        logger.info("Configuration validated successfully")

    @classmethod
    def from_ini(cls, config_path: str) -> "Config":
        """Load configuration from INI file."""
        if not os.path.exists(config_path):
            raise FileNotFoundError(f"Config file not found: {config_path}")

        parser = configparser.ConfigParser()
        try:
            parser.read(config_path, encoding='utf-8')
        except configparser.Error as e:
            raise ConfigurationError(f"Cannot parse {config_path}: {e}") from e

        cls._check_known_keys(parser)

        config = cls()
        try:
            cls._load_sections(parser, config)
        except ValueError as e:
            raise ConfigurationError(f"Invalid value in {config_path}: {e}") from e

        logger.info(f"Configuration loaded from {config_path}")
        return config

    @staticmethod
    def _check_known_keys(parser: configparser.ConfigParser) -> None:
        for section in parser.sections():
            if section not in _KNOWN_KEYS:
                raise ConfigurationError(f"Unknown configuration section: [{section}]")
            unknown = set(parser[section]) - _KNOWN_KEYS[section]
            if unknown:
                raise ConfigurationError(f"Unknown keys in [{section}]: {sorted(unknown)}")

    @staticmethod
    def _load_sections(parser: configparser.ConfigParser, config: "Config") -> None:
        # Load responder section
        if 'responder' in parser:
            sec = parser['responder']
            config.responder.engine = sec.get('engine', 'spark').strip()
            config.responder.num_data_partitions = sec.getint('num_data_partitions', 1000)
            if 'num_col_mult_partitions' in sec:
                config.responder.num_col_mult_partitions = sec.getint('num_col_mult_partitions')
            if 'limit_hits_per_selector' in sec:
                config.responder.limit_hits_per_selector = sec.getboolean('limit_hits_per_selector')
            if 'max_hits_per_selector' in sec:
                config.responder.max_hits_per_selector = sec.getint('max_hits_per_selector')
            config.responder.row_mode = sec.get('row_mode', 'direct').strip()
            config.responder.reduce_strategy = sec.get('reduce_strategy', 'group_by_key').strip()
            config.responder.use_persisted_table = sec.getboolean('use_persisted_table', False)
            config.responder.use_local_cache = sec.getboolean('use_local_cache', True)
            config.responder.local_cache_size = sec.getint('local_cache_size', 100_000)

        # Load data section
        if 'data' in parser:
            sec = parser['data']
            config.data.input_path = sec.get('input_path', '')
            config.data.input_format = sec.get('input_format', 'json').strip().lower()
            config.data.query_path = sec.get('query_path', '')
            config.data.output_path = sec.get('output_path', '')
            config.data.exp_table_dir = sec.get('exp_table_dir', '')

        # Load spark section
        if 'spark' in parser:
            sec = parser['spark']
            config.spark.app_name = sec.get('app_name', 'SparkPIR')
            config.spark.master = sec.get('master', 'local[*]')
            config.spark.executor_memory = sec.get('executor_memory', '4g')
            config.spark.driver_memory = sec.get('driver_memory', '2g')
            config.spark.serializer = sec.get('serializer', config.spark.serializer)
            config.spark.memory_fraction = sec.getfloat('memory_fraction', 0.25)
            config.spark.memory_storage_fraction = sec.getfloat('memory_storage_fraction', 0.10)

        # Load columns section
        if 'columns' in parser:
            for key, value in parser['columns'].items():
                config.columns[key] = value

    def to_ini(self, config_path: str) -> None:
        """Save configuration to INI file."""
        parser = configparser.ConfigParser()

        parser['responder'] = {
            'engine': self.responder.engine,
            'num_data_partitions': str(self.responder.num_data_partitions),
            'row_mode': self.responder.row_mode,
            'reduce_strategy': self.responder.reduce_strategy,
            'use_persisted_table': str(self.responder.use_persisted_table).lower(),
            'use_local_cache': str(self.responder.use_local_cache).lower(),
            'local_cache_size': str(self.responder.local_cache_size),
        }
        if self.responder.num_col_mult_partitions is not None:
            parser['responder']['num_col_mult_partitions'] = str(self.responder.num_col_mult_partitions)
        if self.responder.limit_hits_per_selector is not None:
            parser['responder']['limit_hits_per_selector'] = str(self.responder.limit_hits_per_selector).lower()
        if self.responder.max_hits_per_selector is not None:
            parser['responder']['max_hits_per_selector'] = str(self.responder.max_hits_per_selector)

        parser['data'] = {
            'input_path': self.data.input_path,
            'input_format': self.data.input_format,
            'query_path': self.data.query_path,
            'output_path': self.data.output_path,
            'exp_table_dir': self.data.exp_table_dir,
        }

        parser['spark'] = {
            'app_name': self.spark.app_name,
            'master': self.spark.master,
            'executor_memory': self.spark.executor_memory,
            'driver_memory': self.spark.driver_memory,
            'serializer': self.spark.serializer,
            'memory_fraction': str(self.spark.memory_fraction),
            'memory_storage_fraction': str(self.spark.memory_storage_fraction),
        }

        parser['columns'] = self.columns

        with open(config_path, 'w', encoding='utf-8') as f:
            parser.write(f)

        logger.info(f"Configuration saved to {config_path}")
