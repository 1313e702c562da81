"""Response assembly and output."""
__all__ = ['ResponseAssembler', 'ResponseStore']

def __getattr__(name):
    if name == 'ResponseAssembler':
        from .response_writer import ResponseAssembler
        return ResponseAssembler
    elif name == 'ResponseStore':
        from .response_writer import ResponseStore
        return ResponseStore
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
