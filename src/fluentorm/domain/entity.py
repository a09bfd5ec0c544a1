"""Entity base model and relation metadata.

Entity attributes ARE columns: scalar fields map 1:1 to table columns,
a field typed as another entity is an owned one-to-one relation, and a
``list[...]`` of entities is an owned, ordered one-to-many relation.

Relation fields declare their fetch strategy up front with
:class:`Relation` metadata::

    class User(Entity):
        name: str
        cat: Cat | None = None
        dogs: Annotated[list[Dog], Relation(fetch=FetchStrategy.NONE)] = []

Entities are frozen. Persisting returns copies carrying the assigned
primary keys instead of mutating the caller's instances.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import StrEnum
from typing import ClassVar

from pydantic import BaseModel

PRIMARY_KEY = "id"


class FetchStrategy(StrEnum):
    """How a relation is loaded when its owner is queried."""

    EAGER = "eager"
    NONE = "none"


@dataclass(frozen=True)
class Relation:
    """``Annotated`` marker carrying per-relation options."""

    fetch: FetchStrategy = FetchStrategy.EAGER


class Entity(BaseModel):
    """Base class for every mapped entity.

    Subclasses may set ``__tablename__``; otherwise the table name is the
    snake_case class name (``UserProfile`` -> ``user_profile``).
    """

    model_config = {"frozen": True}

    __tablename__: ClassVar[str | None] = None

    id: int | None = None

    @classmethod
    def table_name(cls) -> str:
        """Return the table this entity type maps to."""
        if cls.__tablename__:
            return cls.__tablename__
        return _snake_case(cls.__name__)

    @property
    def is_persisted(self) -> bool:
        """Whether the backend has assigned a primary key."""
        return self.id is not None


_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])|(?<=[A-Z])(?=[A-Z][a-z])")


def _snake_case(name: str) -> str:
    return _CAMEL_BOUNDARY.sub("_", name).lower()
