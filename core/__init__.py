"""
PIR Responder
=============
Server side of a Private Information Retrieval system: computes the
encrypted response to a Paillier-encrypted query over a record set.

Each column of the response is the product, modulo N^2, of the query
elements raised to the data chunks that landed in that column:
- Selectors are hashed to rows with the query's keyed hash
- Each row's chunks are laid out into consecutive columns
- Column values are multiplied across rows

Supports an in-process engine (small inputs, tests) and a Spark engine.

NOTE: the pipeline is exported lazily; it imports the schema and engine
packages, which themselves import core.errors.
"""

__version__ = "1.0.0"
__author__ = "PIR Responder Team"

# Core exports
from .config import Config, ResponderConfig, DataConfig, SparkConfig
from .errors import (
    PIRError, ConfigurationError, DataConsistencyError, MissingTableEntryError,
    ColumnOverflowError, InvalidEmbeddingError, StorageError, StageError,
)

__all__ = [
    # Config
    "Config", "ResponderConfig", "DataConfig", "SparkConfig",
    # Errors
    "PIRError", "ConfigurationError", "DataConsistencyError", "MissingTableEntryError",
    "ColumnOverflowError", "InvalidEmbeddingError", "StorageError", "StageError",
    # Pipeline
    "ResponderPipeline", "PipelineResult",
]


def __getattr__(name):
    if name in ('ResponderPipeline', 'PipelineResult'):
        from .pipeline import ResponderPipeline, PipelineResult
        return {'ResponderPipeline': ResponderPipeline, 'PipelineResult': PipelineResult}[name]
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
