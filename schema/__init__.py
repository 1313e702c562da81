"""Schema definitions for queries, records and responses."""
__all__ = ['Query', 'QueryInfo', 'EmbeddingParams', 'Record', 'Response']

def __getattr__(name):
    if name in ('Query', 'QueryInfo', 'EmbeddingParams'):
        from .query import Query, QueryInfo, EmbeddingParams
        return {'Query': Query, 'QueryInfo': QueryInfo, 'EmbeddingParams': EmbeddingParams}[name]
    elif name == 'Record':
        from .record import Record
        return Record
    elif name == 'Response':
        from .response import Response
        return Response
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
