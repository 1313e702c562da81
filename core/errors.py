"""
Error taxonomy for the PIR responder.

Every failure in the aggregation core is fatal for the run. Policy-limit
events (a selector exceeding its hit cap) are NOT errors: they are counted
in the metrics and applied silently.
"""

from typing import Optional


class PIRError(Exception):
    """Base class for all responder failures."""


class ConfigurationError(PIRError, ValueError):
    """Unknown, missing or malformed setting. Raised before any distributed work."""


class DataConsistencyError(PIRError):
    """A prior stage produced data the current stage cannot use."""


class MissingTableEntryError(DataConsistencyError):
    """A required (element, power) pair is absent from the exponentiation table."""

    def __init__(self, element_index: int, power: Optional[int] = None):
        self.element_index = element_index
        self.power = power
        if power is None:
            msg = f"Exponentiation table has no entry for query element {element_index}"
        else:
            msg = f"Exponentiation table has no power {power} for query element {element_index}"
        super().__init__(msg + " (table was built incompletely)")

    def __reduce__(self):
        return (self.__class__, (self.element_index, self.power))


class ColumnOverflowError(DataConsistencyError):
    """A row produced more chunks than the response has columns."""

    def __init__(self, row_index: int, column: int, num_columns: int):
        self.row_index = row_index
        self.column = column
        self.num_columns = num_columns
        super().__init__(
            f"Row {row_index} maps a chunk to column {column} but the query has "
            f"{num_columns} columns; every selector hashed to a row adds its chunks to "
            f"that row, so raise num_columns"
        )

    def __reduce__(self):
        return (self.__class__, (self.row_index, self.column, self.num_columns))


class InvalidEmbeddingError(DataConsistencyError):
    """A record's embedded chunks do not match the query's embedding parameters."""


class StorageError(PIRError, IOError):
    """I/O failure at one of the storage boundaries."""

    def __init__(self, boundary: str, path: str, message: str):
        self.boundary = boundary
        self.path = path
        self.message = message
        super().__init__(f"[{boundary}] {message}: {path}")

    def __reduce__(self):
        return (self.__class__, (self.boundary, self.path, self.message))


class StageError(PIRError):
    """A distributed stage failed; wraps the worker-side cause."""

    def __init__(self, stage: str, message: str):
        self.stage = stage
        self.message = message
        super().__init__(f"Stage '{stage}' failed: {message}")

    def __reduce__(self):
        return (self.__class__, (self.stage, self.message))
