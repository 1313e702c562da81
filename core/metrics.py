"""
Process-wide counters for a responder run.

Workers never share a mutable counter. Each worker accumulates locally and
the partial counts are merged with integer addition, which is associative
and commutative, so the final numbers do not depend on partitioning or
on the order in which workers finish.

Two sinks implement the same small interface (add / add_selector_hits):
- ResponderMetrics: plain in-process counters (local engine, tests)
- SparkMetrics (core.spark_metrics): one Spark accumulator per counter
  (Spark engine)
"""

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, Optional


logger = logging.getLogger(__name__)


RECORDS_RECEIVED = "records_received"
RECORDS_FILTERED = "records_filtered"
RECORDS_KEPT = "records_kept"
HITS_DROPPED = "hits_dropped"
LIMIT_TRIGGERS = "limit_triggers"
ROWS_AGGREGATED = "rows_aggregated"
COLUMN_PARTIALS = "column_partials"

COUNTER_NAMES = (
    RECORDS_RECEIVED,
    RECORDS_FILTERED,
    RECORDS_KEPT,
    HITS_DROPPED,
    LIMIT_TRIGGERS,
    ROWS_AGGREGATED,
    COLUMN_PARTIALS,
)


@dataclass
class ResponderMetrics:
    """Counters of one worker, one partition, or a whole run after merging."""
    records_received: int = 0
    records_filtered: int = 0   # keep decision was false
    records_kept: int = 0       # routed into a row bucket
    hits_dropped: int = 0       # dropped by the per-selector hit cap
    limit_triggers: int = 0     # selectors that reached the cap and lost records
    rows_aggregated: int = 0
    column_partials: int = 0
    hits_per_selector: Counter = field(default_factory=Counter)

    def add(self, name: str, amount: int = 1) -> None:
        if name not in COUNTER_NAMES:
            raise KeyError(f"Unknown counter: {name}")
        setattr(self, name, getattr(self, name) + amount)

    def add_selector_hits(self, selector: str, amount: int = 1) -> None:
        self.hits_per_selector[selector] += amount

    def merge(self, other: "ResponderMetrics") -> "ResponderMetrics":
        """Return a new ResponderMetrics holding the sum of both."""
        merged = ResponderMetrics()
        for name in COUNTER_NAMES:
            setattr(merged, name, getattr(self, name) + getattr(other, name))
        merged.hits_per_selector = self.hits_per_selector + other.hits_per_selector
        return merged

    def counters(self) -> Dict[str, int]:
        return {name: getattr(self, name) for name in COUNTER_NAMES}

    def to_dict(self) -> Dict[str, object]:
        result: Dict[str, object] = dict(self.counters())
        result["hits_per_selector"] = dict(self.hits_per_selector)
        return result

    def summary(self, top_selectors: int = 10) -> str:
        """Generate summary string."""
        lines = [
            "=" * 60,
            "Responder Metrics",
            "=" * 60,
            f"Records received:        {self.records_received:,}",
            f"Records filtered:        {self.records_filtered:,}",
            f"Records kept:            {self.records_kept:,}",
            f"Hits dropped by limit:   {self.hits_dropped:,}",
            f"Selectors over limit:    {self.limit_triggers:,}",
            f"Rows aggregated:         {self.rows_aggregated:,}",
            f"Column partials emitted: {self.column_partials:,}",
            f"Distinct selectors:      {len(self.hits_per_selector):,}",
        ]
        if self.hits_per_selector and top_selectors > 0:
            lines.append("")
            lines.append(f"Top {top_selectors} selectors by retained hits:")
            for selector, hits in self.hits_per_selector.most_common(top_selectors):
                lines.append(f"  {selector}: {hits:,}")
        lines.append("=" * 60)
        return "\n".join(lines)


def merge_all(parts) -> ResponderMetrics:
    """Merge any number of partial metrics (order does not matter)."""
    total: Optional[ResponderMetrics] = None
    for part in parts:
        total = part if total is None else total.merge(part)
    return total if total is not None else ResponderMetrics()
