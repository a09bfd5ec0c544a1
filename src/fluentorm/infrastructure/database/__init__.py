"""Schema registry, row codec, SQL compiler and storage backends via SQLAlchemy Core."""

from fluentorm.infrastructure.database.backend import SqlAlchemyBackend, StorageBackend
from fluentorm.infrastructure.database.codec import RelatedEntities, Row, decode, encode, link_rows
from fluentorm.infrastructure.database.compiler import CompiledQuery, SqlCompiler
from fluentorm.infrastructure.database.engine import create_all, create_db_engine
from fluentorm.infrastructure.database.registry import (
    FieldKind,
    FieldSpec,
    Schema,
    SchemaRegistry,
)

__all__ = [
    "CompiledQuery",
    "FieldKind",
    "FieldSpec",
    "RelatedEntities",
    "Row",
    "Schema",
    "SchemaRegistry",
    "SqlAlchemyBackend",
    "SqlCompiler",
    "StorageBackend",
    "create_all",
    "create_db_engine",
    "decode",
    "encode",
    "link_rows",
]
