"""
Hadoop FileSystem access through an active SparkContext.

Paths that carry a scheme (hdfs://, s3a://, ...) are read and written with
the JVM FileSystem of the running Spark session. Plain paths stay on the
local filesystem and never come through here.
"""

import logging


logger = logging.getLogger(__name__)


def has_scheme(path: str) -> bool:
    return "://" in path


def hadoop_fs(sc, path: str):
    """(FileSystem, Path) pair for a path, resolved with the job's Hadoop configuration."""
    jpath = sc._jvm.org.apache.hadoop.fs.Path(path)
    return jpath.getFileSystem(sc._jsc.hadoopConfiguration()), jpath


def read_text(sc, path: str) -> str:
    """Whole content of a text document."""
    return "\n".join(sc.textFile(path, 1).collect())


def write_text(sc, path: str, text: str) -> None:
    """
    Write a text document atomically: to <path>.tmp first, then renamed.

    An existing document at path is replaced. On failure the temporary file
    is removed and the error propagates.
    """
    fs, jpath = hadoop_fs(sc, path)
    tmp_jpath = sc._jvm.org.apache.hadoop.fs.Path(f"{path}.tmp")
    try:
        out = fs.create(tmp_jpath, True)
        try:
            out.write(bytearray(text.encode("utf-8")))
        finally:
            out.close()
        if fs.exists(jpath):
            fs.delete(jpath, False)
        if not fs.rename(tmp_jpath, jpath):
            raise IOError(f"cannot rename {path}.tmp to {path}")
    except Exception:
        if fs.exists(tmp_jpath):
            fs.delete(tmp_jpath, False)
        raise
    logger.debug(f"Wrote {len(text)} characters to {path}")
