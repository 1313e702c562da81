"""
Record as handed over by the external schema/stop-list collaborator.

The collaborator has already decided whether the record is kept and how it
is embedded; the responder only needs the selector, that decision, and the
numeric chunks. embed_value() covers sources that ship a raw value instead
of pre-computed chunks.
"""

from typing import NamedTuple, Tuple, Union

from core.errors import InvalidEmbeddingError
from schema.query import EmbeddingParams


class Record(NamedTuple):
    selector: str
    keep: bool
    chunks: Tuple[int, ...]


def embed_value(value: Union[bytes, str, int], params: EmbeddingParams) -> Tuple[int, ...]:
    """
    Split a value into chunks_per_element chunks of chunk_bit_size bits.

    Most significant chunk first, left padded with zero chunks. Values that
    need more than chunk_bit_size * chunks_per_element bits are rejected.
    """
    if isinstance(value, str):
        value = value.encode("utf-8")
    if isinstance(value, bytes):
        number = int.from_bytes(value, "big")
    else:
        number = int(value)
    if number < 0:
        raise InvalidEmbeddingError(f"Cannot embed negative value {number}")

    total_bits = params.chunk_bit_size * params.chunks_per_element
    if number.bit_length() > total_bits:
        raise InvalidEmbeddingError(
            f"Value needs {number.bit_length()} bits, embedding holds {total_bits}"
        )

    mask = params.max_chunk_value
    chunks = []
    for i in reversed(range(params.chunks_per_element)):
        chunks.append((number >> (i * params.chunk_bit_size)) & mask)
    return tuple(chunks)


def join_chunks(chunks: Tuple[int, ...], params: EmbeddingParams) -> int:
    """Inverse of embed_value for integers (used by the decrypting side and tests)."""
    number = 0
    for chunk in chunks:
        number = (number << params.chunk_bit_size) | chunk
    return number
