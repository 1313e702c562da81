"""
Selector Router.

Maps each qualifying record to a row bucket and enforces the per-selector
hit cap.

ROUTING:
- row = keyed MD5 digest of the selector, reduced modulo num_rows
- the digest never depends on object identity, hash randomization or
  iteration order, so every worker and every run agrees on the row

HIT LIMITING (exact, global):
- route() only tags records with their row; nothing is dropped there
- build_bucket() runs after the shuffle by row, when ALL records of a
  selector sit in the same bucket, and keeps the first max_hits_per_selector
  of them in canonical (selector, chunks) order
- the cap is therefore exact regardless of how the input was partitioned,
  and which records survive does not depend on arrival order
"""

import hashlib
import logging
from collections import Counter
from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple

from core import metrics as m
from core.errors import InvalidEmbeddingError
from schema.query import EmbeddingParams, QueryInfo
from schema.record import Record


logger = logging.getLogger(__name__)


RoutedEntry = Tuple[str, Tuple[int, ...]]


def row_index(selector: str, hash_key: str, num_rows: int) -> int:
    """Deterministic row for a selector: keyed MD5 digest mod num_rows."""
    digest = hashlib.md5((hash_key + selector).encode("utf-8")).digest()
    return int.from_bytes(digest[:8], "big") % num_rows


@dataclass(frozen=True)
class RowBucket:
    """All chunk vectors kept for one row, in canonical order."""
    row_index: int
    chunk_vectors: Tuple[Tuple[int, ...], ...]

    @property
    def num_hits(self) -> int:
        return len(self.chunk_vectors)


class SelectorRouter:
    """
    Routes records to rows and builds row buckets.

    Instances are shipped to workers inside Spark closures; they hold only
    the read-only QueryInfo/EmbeddingParams and a metrics sink.
    """

    def __init__(self, query_info: QueryInfo, embedding: EmbeddingParams, metrics):
        self.query_info = query_info
        self.embedding = embedding
        self.metrics = metrics

    def row_for(self, selector: str) -> int:
        return row_index(selector, self.query_info.hash_key, self.query_info.num_rows)

    def route(self, record: Record) -> Optional[Tuple[int, RoutedEntry]]:
        """Return (row, (selector, chunks)) for a kept record, None otherwise."""
        self.metrics.add(m.RECORDS_RECEIVED)
        if not record.keep:
            self.metrics.add(m.RECORDS_FILTERED)
            return None

        chunks = tuple(int(c) for c in record.chunks)
        self._check_chunks(record.selector, chunks)
        return self.row_for(record.selector), (record.selector, chunks)

    def _check_chunks(self, selector: str, chunks: Tuple[int, ...]) -> None:
        expected = self.embedding.chunks_per_element
        if len(chunks) != expected:
            raise InvalidEmbeddingError(
                f"Record for selector {selector!r} has {len(chunks)} chunks, expected {expected}"
            )
        max_value = self.embedding.max_chunk_value
        for chunk in chunks:
            if not 0 <= chunk <= max_value:
                raise InvalidEmbeddingError(
                    f"Record for selector {selector!r} has chunk {chunk} outside [0, {max_value}]"
                )

    def limit_hits(self, entries: Iterable[RoutedEntry]) -> Tuple[List[RoutedEntry], int, int]:
        """
        Apply the hit cap to every entry of one row.

        Returns (kept entries in canonical order, number dropped, number of
        selectors that lost entries).
        """
        ordered = sorted(entries)
        if not self.query_info.limit_hits_per_selector:
            return ordered, 0, 0

        cap = self.query_info.max_hits_per_selector
        kept: List[RoutedEntry] = []
        seen: Counter = Counter()
        dropped = 0
        for selector, chunks in ordered:
            count = seen[selector]
            if count >= cap:
                dropped += 1
            else:
                kept.append((selector, chunks))
            seen[selector] = count + 1
        triggers = sum(1 for count in seen.values() if count > cap)
        return kept, dropped, triggers

    def build_bucket(self, row: int, entries: Iterable[RoutedEntry]) -> RowBucket:
        kept, dropped, triggers = self.limit_hits(entries)

        self.metrics.add(m.RECORDS_KEPT, len(kept))
        if dropped:
            self.metrics.add(m.HITS_DROPPED, dropped)
            self.metrics.add(m.LIMIT_TRIGGERS, triggers)

        hits = Counter(selector for selector, _ in kept)
        for selector, count in hits.items():
            self.metrics.add_selector_hits(selector, count)

        return RowBucket(row_index=row, chunk_vectors=tuple(chunks for _, chunks in kept))
