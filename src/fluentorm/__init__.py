"""fluentorm: an embeddable ORM core with an immutable fluent query builder."""

from fluentorm.domain.entity import Entity, FetchStrategy, Relation
from fluentorm.errors import (
    CodecMismatchError,
    DuplicateSchemaError,
    ExecutionError,
    FluentOrmError,
)
from fluentorm.infrastructure.database.engine import create_db_engine
from fluentorm.orm import Orm
from fluentorm.plugins.hookspecs import hookimpl
from fluentorm.plugins.query_logger import StructlogQueryLogger
from fluentorm.query.builder import Query

__version__ = "0.1.0"

__all__ = [
    "CodecMismatchError",
    "DuplicateSchemaError",
    "Entity",
    "ExecutionError",
    "FetchStrategy",
    "FluentOrmError",
    "Orm",
    "Query",
    "Relation",
    "StructlogQueryLogger",
    "__version__",
    "create_db_engine",
    "hookimpl",
]
