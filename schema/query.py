"""
Encrypted query objects.

A Query is loaded once per run and broadcast read-only to every worker.
All dataclasses here are frozen; a run that needs different effective
settings (e.g. hit-limit overrides from the configuration) builds a new
instance with dataclasses.replace() before broadcasting.

Persisted format (JSON, big integers as decimal strings):

    {
      "query_info": {"identifier": ..., "query_type": ..., "num_rows": ...,
                     "num_columns": ..., "hash_key": ...,
                     "limit_hits_per_selector": ..., "max_hits_per_selector": ...,
                     "use_exp_lookup_table": ...},
      "n_squared": "3233",
      "embedding": {"chunk_bit_size": 8, "chunks_per_element": 4},
      "elements": {"0": "2", "1": "...", ...}
    }
"""

import hashlib
import json
import logging
import os
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, Mapping

from core.errors import ConfigurationError, StorageError
from core.hadoop_fs import has_scheme, read_text, write_text


logger = logging.getLogger(__name__)


_TRUE_STRINGS = ("true", "1", "yes", "y")
_FALSE_STRINGS = ("false", "0", "no", "n")


def _parse_bool(value: Any, name: str) -> bool:
    """JSON booleans, 0/1, or the usual true/false spellings; anything else is rejected."""
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        text = value.strip().lower()
        if text in _TRUE_STRINGS:
            return True
        if text in _FALSE_STRINGS:
            return False
    raise ConfigurationError(f"{name} must be a boolean, got {value!r}")


@dataclass(frozen=True)
class QueryInfo:
    """Public query parameters, shared with the decrypting party in the Response."""
    identifier: str
    query_type: str
    num_rows: int
    num_columns: int
    hash_key: str = ""
    limit_hits_per_selector: bool = False
    max_hits_per_selector: int = 1000
    use_exp_lookup_table: bool = False

    def validate(self) -> None:
        if not self.identifier:
            raise ConfigurationError("query_info.identifier must be non-empty")
        if self.num_rows < 1:
            raise ConfigurationError(f"num_rows must be >= 1, got {self.num_rows}")
        if self.num_columns < 1:
            raise ConfigurationError(f"num_columns must be >= 1, got {self.num_columns}")
        if self.limit_hits_per_selector and self.max_hits_per_selector < 1:
            raise ConfigurationError(
                f"max_hits_per_selector must be >= 1 when limiting, got {self.max_hits_per_selector}"
            )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "QueryInfo":
        return cls(
            identifier=str(data["identifier"]),
            query_type=str(data["query_type"]),
            num_rows=int(data["num_rows"]),
            num_columns=int(data["num_columns"]),
            hash_key=str(data.get("hash_key", "")),
            limit_hits_per_selector=_parse_bool(
                data.get("limit_hits_per_selector", False), "limit_hits_per_selector"
            ),
            max_hits_per_selector=int(data.get("max_hits_per_selector", 1000)),
            use_exp_lookup_table=_parse_bool(
                data.get("use_exp_lookup_table", False), "use_exp_lookup_table"
            ),
        )


@dataclass(frozen=True)
class EmbeddingParams:
    """
    How a record is embedded: chunks_per_element chunks of chunk_bit_size bits.

    Chunk values range over [0, 2^chunk_bit_size), which is also the set of
    powers the exponentiation table must hold for every query element.
    """
    chunk_bit_size: int = 8
    chunks_per_element: int = 1

    @property
    def max_chunk_value(self) -> int:
        return (1 << self.chunk_bit_size) - 1

    def validate(self) -> None:
        if not 1 <= self.chunk_bit_size <= 24:
            raise ConfigurationError(f"chunk_bit_size must be in [1, 24], got {self.chunk_bit_size}")
        if self.chunks_per_element < 1:
            raise ConfigurationError(f"chunks_per_element must be >= 1, got {self.chunks_per_element}")


@dataclass(frozen=True)
class Query:
    """The encrypted query vector: one ciphertext base per row."""
    query_info: QueryInfo
    n_squared: int
    elements: Mapping[int, int]
    embedding: EmbeddingParams = field(default_factory=EmbeddingParams)

    def element(self, index: int) -> int:
        return self.elements[index]

    def validate(self) -> None:
        """Check internal consistency. Raises ConfigurationError."""
        self.query_info.validate()
        self.embedding.validate()
        if self.n_squared <= 1:
            raise ConfigurationError(f"n_squared must be > 1, got {self.n_squared}")
        missing = [i for i in range(self.query_info.num_rows) if i not in self.elements]
        if missing:
            raise ConfigurationError(
                f"Query has no element for {len(missing)} of {self.query_info.num_rows} rows "
                f"(first missing: {missing[0]})"
            )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "query_info": self.query_info.to_dict(),
            "n_squared": str(self.n_squared),
            "embedding": asdict(self.embedding),
            "elements": {str(i): str(v) for i, v in sorted(self.elements.items())},
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Query":
        embedding = data.get("embedding", {})
        return cls(
            query_info=QueryInfo.from_dict(data["query_info"]),
            n_squared=int(data["n_squared"]),
            elements={int(i): int(v) for i, v in data["elements"].items()},
            embedding=EmbeddingParams(
                chunk_bit_size=int(embedding.get("chunk_bit_size", 8)),
                chunks_per_element=int(embedding.get("chunks_per_element", 1)),
            ),
        )

    def query_hash(self) -> str:
        """Stable hash keying the persisted exponentiation table."""
        canonical = json.dumps(
            {
                "identifier": self.query_info.identifier,
                "n_squared": str(self.n_squared),
                "chunk_bit_size": self.embedding.chunk_bit_size,
                "elements": [[i, str(v)] for i, v in sorted(self.elements.items())],
            },
            sort_keys=True,
            separators=(",", ":"),
        )
        return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


class QueryStore:
    """
    Loads and stores Query objects as JSON documents.

    Local paths use plain files. Hadoop URIs (hdfs://, s3a://, ...) go
    through the Hadoop FileSystem of the given SparkContext and are refused
    without one.
    """

    BOUNDARY = "query"

    def __init__(self, sc=None):
        self.sc = sc

    def _check_scheme(self, path: str) -> bool:
        if not has_scheme(path):
            return False
        if self.sc is None:
            raise ConfigurationError(f"Query path {path} is a Hadoop URI; it needs the spark engine")
        return True

    def load(self, path: str) -> Query:
        logger.info(f"Loading query from: {path}")
        remote = self._check_scheme(path)
        try:
            if remote:
                data = json.loads(read_text(self.sc, path))
            else:
                with open(path, "r", encoding="utf-8") as f:
                    data = json.load(f)
        except Exception as e:
            raise StorageError(self.BOUNDARY, path, f"cannot read query ({e})") from e

        try:
            query = Query.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            raise ConfigurationError(f"Malformed query document {path}: {e}") from e

        query.validate()
        logger.info(
            f"Loaded query {query.query_info.identifier} "
            f"(type={query.query_info.query_type}, rows={query.query_info.num_rows}, "
            f"columns={query.query_info.num_columns})"
        )
        return query

    def store(self, path: str, query: Query) -> str:
        if self._check_scheme(path):
            try:
                write_text(self.sc, path, json.dumps(query.to_dict(), indent=2))
            except Exception as e:
                raise StorageError(self.BOUNDARY, path, f"cannot write query ({e})") from e
            logger.info(f"Query saved to {path}")
            return path

        tmp_path = f"{path}.tmp"
        try:
            parent = os.path.dirname(path)
            if parent:
                os.makedirs(parent, exist_ok=True)
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(query.to_dict(), f, indent=2)
            os.replace(tmp_path, path)
        except OSError as e:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise StorageError(self.BOUNDARY, path, f"cannot write query ({e})") from e
        logger.info(f"Query saved to {path}")
        return path
