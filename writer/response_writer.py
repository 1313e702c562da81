"""
Response Assembler and Response Store.

The assembler turns the reduced column map into a complete, ordered
Response; the store persists it as a JSON document. Writes go to a
temporary file that is renamed into place (plain files, or the Hadoop
FileSystem for hdfs:// and similar URIs), so a failed write never leaves
a partial response behind.
"""

import json
import logging
import os
from typing import Mapping

from core.errors import ConfigurationError, DataConsistencyError, StorageError
from core.hadoop_fs import has_scheme, read_text, write_text
from core.modexp import IDENTITY
from schema.query import QueryInfo
from schema.response import Response


logger = logging.getLogger(__name__)


class ResponseAssembler:
    """Orders the final (column, ciphertext) pairs and fills empty columns."""

    def __init__(self, query_info: QueryInfo):
        self.query_info = query_info

    def assemble(self, column_values: Mapping[int, int]) -> Response:
        num_columns = self.query_info.num_columns
        stray = [c for c in column_values if not 0 <= c < num_columns]
        if stray:
            raise DataConsistencyError(
                f"Reduced columns outside [0, {num_columns}): {sorted(stray)[:10]}"
            )

        columns = tuple(
            (index, column_values.get(index, IDENTITY)) for index in range(num_columns)
        )
        empty = num_columns - len(column_values)
        logger.info(f"Assembled response: {num_columns} columns ({empty} without contributions)")
        return Response(query_info=self.query_info, columns=columns)


class ResponseStore:
    """
    Reads and writes Response documents.

    Hadoop URIs are written through the Hadoop FileSystem of the given
    SparkContext; without one they are refused before anything is written.
    """

    BOUNDARY = "response"

    def __init__(self, sc=None):
        self.sc = sc

    def _check_scheme(self, path: str) -> bool:
        if not has_scheme(path):
            return False
        if self.sc is None:
            raise ConfigurationError(f"Response path {path} is a Hadoop URI; it needs the spark engine")
        return True

    def store(self, path: str, response: Response) -> str:
        if self._check_scheme(path):
            try:
                write_text(self.sc, path, json.dumps(response.to_dict()))
            except Exception as e:
                raise StorageError(self.BOUNDARY, path, f"cannot write response ({e})") from e
            logger.info(f"Response written to: {path}")
            return path

        tmp_path = f"{path}.tmp"
        try:
            parent = os.path.dirname(path)
            if parent:
                os.makedirs(parent, exist_ok=True)
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(response.to_dict(), f)
            os.replace(tmp_path, path)
        except OSError as e:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise StorageError(self.BOUNDARY, path, f"cannot write response ({e})") from e

        logger.info(f"Response written to: {path}")
        return path

    def load(self, path: str) -> Response:
        remote = self._check_scheme(path)
        try:
            if remote:
                return Response.from_dict(json.loads(read_text(self.sc, path)))
            with open(path, "r", encoding="utf-8") as f:
                return Response.from_dict(json.load(f))
        except Exception as e:
            raise StorageError(self.BOUNDARY, path, f"cannot read response ({e})") from e
