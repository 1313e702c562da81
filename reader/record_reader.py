"""
Record readers.

Bridges the external record source to the responder: every record comes out
as a Record(selector, keep, chunks). Source columns are renamed to internal
names via config.columns.

Expected source columns (internal names after column mapping):
- selector: selector value (required)
- keep:     keep decision from the schema/stop-list collaborator (optional,
            missing means kept)
- chunks:   embedded numeric chunks (array, or a space/comma separated string)
- value:    raw value to embed, used when chunks is absent
"""

import json
import logging
import re
from functools import partial
from typing import Any, Dict, Iterator, Mapping, Optional, TYPE_CHECKING

from core.config import Config
from core.errors import ConfigurationError, StorageError
from schema.query import EmbeddingParams
from schema.record import Record, embed_value

if TYPE_CHECKING:
    from pyspark.sql import DataFrame, SparkSession


logger = logging.getLogger(__name__)


_CHUNK_SEPARATORS = re.compile(r"[\s,;]+")


def _parse_chunks(raw: Any):
    if isinstance(raw, str):
        return tuple(int(c) for c in _CHUNK_SEPARATORS.split(raw.strip()) if c)
    return tuple(int(c) for c in raw)


def _parse_keep(raw: Any) -> bool:
    if raw is None:
        return True
    if isinstance(raw, str):
        return raw.strip().lower() in ("true", "1", "yes", "y")
    return bool(raw)


def to_record(fields: Mapping[str, Any], embedding: EmbeddingParams) -> Record:
    """Build a Record from a mapping that already uses internal names."""
    chunks = fields.get("chunks")
    if chunks is not None:
        parsed = _parse_chunks(chunks)
    else:
        parsed = embed_value(fields["value"], embedding)
    return Record(
        selector=str(fields["selector"]),
        keep=_parse_keep(fields.get("keep")),
        chunks=parsed,
    )


def _row_to_record(row, embedding: EmbeddingParams) -> Record:
    return to_record(row.asDict(), embedding)


class SparkRecordReader:
    """
    Reads records with Spark from json (one object per line), parquet or csv.

    pyspark is imported by the methods that need it, so the in-process
    engine can use this module without Spark installed.
    """

    def __init__(self, spark: "SparkSession", config: Config, embedding: EmbeddingParams):
        self.spark = spark
        self.config = config
        self.embedding = embedding
        self.column_mapping = config.columns

    def read_dataframe(self) -> "DataFrame":
        input_path = self.config.data.input_path
        input_format = self.config.data.input_format.lower()

        logger.info(f"Reading records from: {input_path} (format: {input_format})")

        try:
            if input_format == 'json':
                df = self.spark.read.json(input_path)
            elif input_format == 'parquet':
                df = self.spark.read.parquet(input_path)
            elif input_format == 'csv':
                df = (
                    self.spark.read
                    .option("header", "true")
                    .option("encoding", "UTF-8")
                    .csv(input_path)
                )
            else:
                raise ConfigurationError(f"Unsupported input format: {input_format}")
        except ConfigurationError:
            raise
        except Exception as e:
            raise StorageError("records", input_path, f"cannot read records ({e})") from e

        df = self._rename_columns(df)
        return self._validate(df)

    def _rename_columns(self, df: "DataFrame") -> "DataFrame":
        """Rename columns to standard names based on config mapping."""
        for standard_name, source_name in self.column_mapping.items():
            if source_name in df.columns and source_name != standard_name:
                df = df.withColumnRenamed(source_name, standard_name)
        return df

    def _validate(self, df: "DataFrame") -> "DataFrame":
        from pyspark.sql import functions as F

        if 'selector' not in df.columns:
            raise ConfigurationError(f"Input has no selector column (columns: {df.columns})")
        if 'chunks' not in df.columns and 'value' not in df.columns:
            raise ConfigurationError("Input needs either a chunks or a value column")

        keep_columns = [c for c in ('selector', 'keep', 'chunks', 'value') if c in df.columns]
        return df.select(*keep_columns).filter(F.col('selector').isNotNull())

    def read(self, num_partitions: Optional[int] = None):
        """RDD of Record, coalesced to num_partitions when given."""
        rdd = self.read_dataframe().rdd.map(partial(_row_to_record, embedding=self.embedding))
        if num_partitions:
            rdd = rdd.coalesce(num_partitions)
        return rdd


def read_records_jsonl(
    path: str,
    embedding: EmbeddingParams,
    column_mapping: Optional[Dict[str, str]] = None
) -> Iterator[Record]:
    """Lazily read records from a JSON-lines file (in-process engine)."""
    rename = {source: standard for standard, source in (column_mapping or {}).items()}
    try:
        with open(path, "r", encoding="utf-8") as f:
            for line_no, line in enumerate(f, start=1):
                if not line.strip():
                    continue
                try:
                    raw = json.loads(line)
                except ValueError as e:
                    raise StorageError("records", path, f"line {line_no} is not valid JSON ({e})") from e
                fields = {rename.get(k, k): v for k, v in raw.items()}
                if fields.get("selector") is None:
                    continue
                yield to_record(fields, embedding)
    except OSError as e:
        raise StorageError("records", path, f"cannot read records ({e})") from e
