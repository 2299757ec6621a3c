from featureforge.sources.base import SourceAdapter, TableSource
from featureforge.sources.duckdb import DuckDBSource
from featureforge.sources.files import CsvSource, FileSource, ParquetSource, file_source
from featureforge.sources.memory import InMemorySource
from featureforge.sources.random import RandomDataSource
from featureforge.sources.retry import RetryingSource

__all__ = [
    "SourceAdapter",
    "TableSource",
    "InMemorySource",
    "FileSource",
    "ParquetSource",
    "CsvSource",
    "file_source",
    "DuckDBSource",
    "RandomDataSource",
    "RetryingSource",
]
