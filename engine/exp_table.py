"""
Exponentiation Table Builder.

Table layout: query element index -> ordered [(power, base^power mod N^2)]
for every power in 0 .. 2^chunk_bit_size - 1. The element index is the row
index, so one row only ever needs its own element's powers.

MODES:
- On-demand (direct row mode, see engine.row_aggregator): each worker
  computes base^power the first time it needs it and keeps it in a
  per-process LRU cache for the rest of the run. Nothing is persisted.
- Precomputed (ExpTable / SparkExpTableBuilder): the full table is computed
  once, in parallel, and optionally persisted under
  <exp_table_dir>/<query_hash>. A later run of the same query finds the
  completed table (marked by _SUCCESS) and loads it instead of recomputing.

PERSISTED FORMAT:
- a directory of text part files, one "element power value" line per entry,
  decimal integers, plus an empty _SUCCESS marker written last
- Spark writes it with saveAsTextFile(); the local engine writes the same
  layout with plain files

Any failure while computing or persisting the table aborts the run; a table
without its _SUCCESS marker is never read.
"""

import logging
import os
import shutil
import tempfile
from functools import partial
from typing import Dict, Iterable, Iterator, List, Optional, Tuple

from core.errors import MissingTableEntryError, StorageError
from core.hadoop_fs import hadoop_fs
from core.modexp import mod_pow
from schema.query import EmbeddingParams, Query


logger = logging.getLogger(__name__)


SUCCESS_MARKER = "_SUCCESS"
PART_FILE = "part-00000"
BOUNDARY = "exp_table"

PowerList = List[Tuple[int, int]]


def required_powers(embedding: EmbeddingParams) -> range:
    """Every power a row computation may ask for."""
    return range(0, embedding.max_chunk_value + 1)


def compute_element_powers(base: int, powers: Iterable[int], modulus: int) -> PowerList:
    """[(power, base^power mod modulus)] for one query element."""
    return [(power, mod_pow(base, power, modulus)) for power in powers]


def table_path(table_dir: str, query_hash: str) -> str:
    # Hadoop URIs (hdfs://, s3a://) as well as local paths
    return f"{table_dir.rstrip('/')}/{query_hash}"


def format_entries(element: int, power_list: PowerList) -> Iterator[str]:
    for power, value in power_list:
        yield f"{element} {power} {value}"


def parse_line(line: str) -> Tuple[int, int, int]:
    element, power, value = line.split()
    return int(element), int(power), int(value)


def estimate_table_bytes(query: Query) -> int:
    """Rough in-memory size of the full table (values plus tuple overhead)."""
    value_bytes = (query.n_squared.bit_length() + 7) // 8 + 28
    entries = len(query.elements) * (query.embedding.max_chunk_value + 1)
    return entries * (value_bytes + 64)


class ExpTable:
    """In-memory precomputed table."""

    def __init__(self, entries: Dict[int, Dict[int, int]]):
        self._entries = entries

    @classmethod
    def compute(cls, query: Query, elements: Optional[Iterable[int]] = None) -> "ExpTable":
        powers = required_powers(query.embedding)
        indices = sorted(query.elements) if elements is None else sorted(elements)
        logger.info(f"Computing exponentiation table: {len(indices)} elements x {len(powers)} powers")
        entries = {
            i: dict(compute_element_powers(query.element(i), powers, query.n_squared))
            for i in indices
        }
        return cls(entries)

    @property
    def num_elements(self) -> int:
        return len(self._entries)

    def element_indices(self) -> List[int]:
        return sorted(self._entries)

    def powers_for(self, element: int) -> Dict[int, int]:
        powers = self._entries.get(element)
        if powers is None:
            raise MissingTableEntryError(element)
        return powers

    def lookup(self, element: int, power: int) -> int:
        value = self.powers_for(element).get(power)
        if value is None:
            raise MissingTableEntryError(element, power)
        return value

    def power_list(self, element: int) -> PowerList:
        return sorted(self.powers_for(element).items())


class ExpTableStore:
    """Persisted tables on the local filesystem (in-process engine)."""

    def __init__(self, table_dir: str):
        self.table_dir = table_dir

    def path_for(self, query: Query) -> str:
        return table_path(self.table_dir, query.query_hash())

    def exists(self, query: Query) -> bool:
        return os.path.exists(os.path.join(self.path_for(query), SUCCESS_MARKER))

    def load(self, query: Query) -> ExpTable:
        path = self.path_for(query)
        logger.info(f"Loading persisted exponentiation table from: {path}")
        entries: Dict[int, Dict[int, int]] = {}
        try:
            for name in sorted(os.listdir(path)):
                if not name.startswith("part-"):
                    continue
                with open(os.path.join(path, name), "r", encoding="utf-8") as f:
                    for line in f:
                        if line.strip():
                            element, power, value = parse_line(line)
                            entries.setdefault(element, {})[power] = value
        except (OSError, ValueError) as e:
            raise StorageError(BOUNDARY, path, f"cannot read table ({e})") from e
        return ExpTable(entries)

    def store(self, query: Query, table: ExpTable) -> str:
        """Write to a temporary directory, then rename into place."""
        path = self.path_for(query)
        tmp_dir = None
        try:
            os.makedirs(self.table_dir, exist_ok=True)
            if os.path.exists(path):
                logger.warning(f"Removing incomplete exponentiation table at {path}")
                shutil.rmtree(path)
            tmp_dir = tempfile.mkdtemp(prefix=".exp_", dir=self.table_dir)
            with open(os.path.join(tmp_dir, PART_FILE), "w", encoding="utf-8") as f:
                for element in table.element_indices():
                    for line in format_entries(element, table.power_list(element)):
                        f.write(line + "\n")
            open(os.path.join(tmp_dir, SUCCESS_MARKER), "w").close()
            os.replace(tmp_dir, path)
        except OSError as e:
            if tmp_dir and os.path.exists(tmp_dir):
                shutil.rmtree(tmp_dir, ignore_errors=True)
            raise StorageError(BOUNDARY, path, f"cannot write table ({e})") from e
        logger.info(f"Exponentiation table persisted to {path}")
        return path

    def load_or_compute(self, query: Query, persist: bool) -> Tuple[ExpTable, str]:
        """Return (table, source) where source is 'loaded' or 'computed'."""
        if persist and self.exists(query):
            return self.load(query), "loaded"
        table = ExpTable.compute(query)
        if persist:
            self.store(query, table)
        return table, "computed"


# ---------------------------------------------------------------------------
# Spark
# ---------------------------------------------------------------------------

def _element_powers(element: int, query_bcast, powers: range) -> Tuple[int, PowerList]:
    query = query_bcast.value
    return element, compute_element_powers(query.element(element), powers, query.n_squared)


def _entry_lines(item: Tuple[int, PowerList]) -> Iterator[str]:
    element, power_list = item
    return format_entries(element, power_list)


def _line_to_pair(line: str) -> Tuple[int, Tuple[int, int]]:
    element, power, value = parse_line(line)
    return element, (power, value)


class SparkExpTableBuilder:
    """
    Builds the table as an RDD of (element, [(power, value), ...]).

    The computed RDD is cached so the persistence write and the row join
    share one computation.
    """

    def __init__(
        self,
        sc,
        query: Query,
        query_bcast,
        table_dir: str,
        persist: bool,
        num_partitions: int
    ):
        self.sc = sc
        self.query = query
        self.query_bcast = query_bcast
        self.table_dir = table_dir
        self.persist = persist
        self.num_partitions = max(1, min(num_partitions, len(query.elements)))
        self.source: Optional[str] = None

    @property
    def path(self) -> str:
        return table_path(self.table_dir, self.query.query_hash())

    def _exists(self, path: str) -> bool:
        fs, jpath = hadoop_fs(self.sc, path)
        return bool(fs.exists(jpath))

    def _delete(self, path: str) -> None:
        fs, jpath = hadoop_fs(self.sc, path)
        fs.delete(jpath, True)

    def build(self):
        path = self.path
        if self.persist:
            try:
                complete = self._exists(f"{path}/{SUCCESS_MARKER}")
                if not complete and self._exists(path):
                    logger.warning(f"Removing incomplete exponentiation table at {path}")
                    self._delete(path)
            except Exception as e:
                raise StorageError(BOUNDARY, path, f"cannot probe table location ({e})") from e
            if complete:
                logger.info(f"Found persisted exponentiation table for query hash at {path}; skipping computation")
                self.source = "loaded"
                return self._load(path)

        powers = required_powers(self.query.embedding)
        logger.info(
            f"Computing exponentiation table: {len(self.query.elements)} elements x "
            f"{len(powers)} powers over {self.num_partitions} partitions"
        )
        table_rdd = (
            self.sc.parallelize(sorted(self.query.elements), self.num_partitions)
            .map(partial(_element_powers, query_bcast=self.query_bcast, powers=powers))
            .cache()
        )

        if self.persist:
            try:
                table_rdd.flatMap(_entry_lines).saveAsTextFile(path)
            except Exception as e:
                raise StorageError(BOUNDARY, path, f"cannot write table ({e})") from e
            logger.info(f"Exponentiation table persisted to {path}")

        self.source = "computed"
        return table_rdd

    def _load(self, path: str):
        return (
            self.sc.textFile(path, self.num_partitions)
            .filter(lambda line: line.strip() != "")
            .map(_line_to_pair)
            .groupByKey(self.num_partitions)
            .mapValues(sorted)
        )
