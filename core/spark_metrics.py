"""
Spark accumulator sink for the responder counters.

Same interface as core.metrics.ResponderMetrics (add / add_selector_hits),
backed by one Spark accumulator per counter. Kept apart from core.metrics so
the in-process engine never imports pyspark.
"""

from collections import Counter

from pyspark import SparkContext
from pyspark.accumulators import AccumulatorParam

from core.metrics import COUNTER_NAMES, ResponderMetrics


class CounterAccumulatorParam(AccumulatorParam):
    """Merges per-selector Counters inside a Spark accumulator."""

    def zero(self, value: Counter) -> Counter:
        return Counter()

    def addInPlace(self, value1: Counter, value2: Counter) -> Counter:
        value1.update(value2)
        return value1


class SparkMetrics:
    """
    Spark accumulator backed counters.

    Accumulators are merged by the driver with addition, so every worker may
    increment concurrently. Updates made inside transformations are counted
    again if Spark re-executes a task; the counters are informational and
    never feed back into the response.
    """

    def __init__(self, sc: SparkContext):
        self._counters = {name: sc.accumulator(0) for name in COUNTER_NAMES}
        self._selector_hits = sc.accumulator(Counter(), CounterAccumulatorParam())

    def add(self, name: str, amount: int = 1) -> None:
        accumulator = self._counters.get(name)
        if accumulator is None:
            raise KeyError(f"Unknown counter: {name}")
        accumulator.add(amount)

    def add_selector_hits(self, selector: str, amount: int = 1) -> None:
        self._selector_hits.add(Counter({selector: amount}))

    def snapshot(self) -> ResponderMetrics:
        """Read the accumulators on the driver."""
        metrics = ResponderMetrics()
        for name, accumulator in self._counters.items():
            setattr(metrics, name, accumulator.value)
        metrics.hits_per_selector = Counter(self._selector_hits.value)
        return metrics
