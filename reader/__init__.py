"""Record readers and the selector router."""
__all__ = [
    'SparkRecordReader',
    'read_records_jsonl',
    'SelectorRouter',
    'row_index',
]

def __getattr__(name):
    if name == 'SparkRecordReader':
        from .record_reader import SparkRecordReader
        return SparkRecordReader
    elif name == 'read_records_jsonl':
        from .record_reader import read_records_jsonl
        return read_records_jsonl
    elif name == 'SelectorRouter':
        from .selector_router import SelectorRouter
        return SelectorRouter
    elif name == 'row_index':
        from .selector_router import row_index
        return row_index
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
