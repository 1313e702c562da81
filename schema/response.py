"""
Response artifact handed to the decrypting party.

Holds one ciphertext per column for every column index in
[0, num_columns), in ascending order, plus the originating QueryInfo.
"""

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Tuple

from schema.query import QueryInfo


@dataclass(frozen=True)
class Response:
    query_info: QueryInfo
    columns: Tuple[Tuple[int, int], ...]

    @property
    def num_columns(self) -> int:
        return len(self.columns)

    def column(self, index: int) -> int:
        return self.as_dict()[index]

    def as_dict(self) -> Dict[int, int]:
        return dict(self.columns)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "query_info": self.query_info.to_dict(),
            "columns": [[index, str(value)] for index, value in self.columns],
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Response":
        return cls(
            query_info=QueryInfo.from_dict(data["query_info"]),
            columns=tuple((int(i), int(v)) for i, v in data["columns"]),
        )
