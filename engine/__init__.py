"""Responder engines: exponentiation table, row aggregation, column reduction."""
__all__ = ['LocalResponder', 'SparkResponder', 'ExpTable', 'ExpTableStore']

def __getattr__(name):
    if name == 'LocalResponder':
        from .responder import LocalResponder
        return LocalResponder
    elif name == 'SparkResponder':
        from .responder_spark import SparkResponder
        return SparkResponder
    elif name in ('ExpTable', 'ExpTableStore'):
        from .exp_table import ExpTable, ExpTableStore
        return {'ExpTable': ExpTable, 'ExpTableStore': ExpTableStore}[name]
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
