"""Tests for the schema registry."""

from __future__ import annotations

from datetime import date, datetime
from typing import Annotated, Optional

import pytest
from sqlalchemy import Boolean, Date, DateTime, Float, Integer, LargeBinary, MetaData, Text

from fluentorm.demo import Cat, Dog, User
from fluentorm.domain.entity import Entity, FetchStrategy, Relation
from fluentorm.errors import DuplicateSchemaError
from fluentorm.infrastructure.database.registry import FieldKind, SchemaRegistry


class Reading(Entity):
    count: int
    ratio: float
    label: str
    flag: bool
    blob: bytes
    taken_at: datetime
    taken_on: date
    note: str | None = None
    legacy_note: Optional[str] = None  # noqa: UP007


class Owner(Entity):
    pets: Annotated[list[Dog], Relation(fetch=FetchStrategy.NONE)] = []


class TestRegister:
    def test_returns_schema(self, registry: SchemaRegistry) -> None:
        schema = registry.register(Cat)
        assert schema.entity_type is Cat
        assert schema.table_name == "cat"
        assert schema.primary_key == "id"
        assert [f.name for f in schema.fields] == ["short_name"]

    def test_idempotent(self, registry: SchemaRegistry) -> None:
        assert registry.register(User) is registry.register(User)
        assert len(registry.schemas()) == 3

    def test_registers_related_types_first(self, registry: SchemaRegistry) -> None:
        registry.register(User)
        assert Cat in registry
        assert Dog in registry
        assert [s.entity_type for s in registry.schemas()] == [Cat, Dog, User]

    def test_rejects_non_entity(self, registry: SchemaRegistry) -> None:
        with pytest.raises(TypeError, match="Entity subclass"):
            registry.register(dict)  # type: ignore[arg-type]

    def test_get_unregistered(self, registry: SchemaRegistry) -> None:
        with pytest.raises(KeyError, match="not registered"):
            registry.get(Cat)

    def test_shared_metadata(self) -> None:
        metadata = MetaData()
        registry = SchemaRegistry(metadata)
        registry.register(User)
        assert set(metadata.tables) == {"cat", "dog", "user", "user_dogs"}


class TestColumns:
    def test_scalar_types(self, registry: SchemaRegistry) -> None:
        table = registry.register(Reading).table
        expected = {
            "count": Integer,
            "ratio": Float,
            "label": Text,
            "flag": Boolean,
            "blob": LargeBinary,
            "taken_at": DateTime,
            "taken_on": Date,
        }
        for name, type_ in expected.items():
            assert isinstance(table.c[name].type, type_), name
            assert table.c[name].nullable is False

    def test_optional_is_nullable(self, registry: SchemaRegistry) -> None:
        schema = registry.register(Reading)
        assert schema.field("note").nullable is True
        assert schema.field("legacy_note").nullable is True
        assert schema.table.c["note"].nullable is True

    def test_primary_key(self, registry: SchemaRegistry) -> None:
        table = registry.register(Cat).table
        assert [c.name for c in table.primary_key.columns] == ["id"]
        assert table.c["id"].autoincrement is True

    def test_one_to_one_foreign_key(self, registry: SchemaRegistry) -> None:
        schema = registry.register(User)
        spec = schema.field("cat")
        assert spec.kind is FieldKind.ONE
        assert spec.column == "cat_id"
        assert spec.target is Cat
        fk = next(iter(schema.table.c["cat_id"].foreign_keys))
        assert fk.target_fullname == "cat.id"

    def test_one_to_many_link_table(self, registry: SchemaRegistry) -> None:
        schema = registry.register(User)
        spec = schema.field("dogs")
        assert spec.kind is FieldKind.MANY
        assert spec.column is None
        assert spec.link_table == "user_dogs"
        link = schema.link_tables["dogs"]
        assert [c.name for c in link.columns] == ["owner_id", "child_id", "position"]
        assert "dogs" not in schema.table.c

    def test_relation_fetch_strategy(self, registry: SchemaRegistry) -> None:
        schema = registry.register(Owner)
        assert schema.field("pets").fetch is FetchStrategy.NONE
        assert schema.eager_relations == ()
        assert registry.register(User).eager_relations == (
            registry.get(User).field("cat"),
            registry.get(User).field("dogs"),
        )

    def test_id_field_lookup(self, registry: SchemaRegistry) -> None:
        spec = registry.register(Cat).field("id")
        assert spec.kind is FieldKind.SCALAR
        assert spec.python_type is int

    def test_unknown_field(self, registry: SchemaRegistry) -> None:
        with pytest.raises(ValueError, match="no field 'colour'"):
            registry.register(Cat).field("colour")


class TestUnsupported:
    def test_unsupported_scalar(self, registry: SchemaRegistry) -> None:
        class Bad(Entity):
            tags: set[str]

        with pytest.raises(TypeError, match="unsupported field type"):
            registry.register(Bad)

    def test_multi_type_union(self, registry: SchemaRegistry) -> None:
        class Bad(Entity):
            value: int | str

        with pytest.raises(TypeError, match="unsupported union"):
            registry.register(Bad)

    def test_relation_marker_on_scalar(self, registry: SchemaRegistry) -> None:
        class Bad(Entity):
            age: Annotated[int, Relation()]

        with pytest.raises(TypeError, match="only applies to entity fields"):
            registry.register(Bad)

    def test_unloaded_collection_needs_default(self, registry: SchemaRegistry) -> None:
        class Kennel(Entity):
            dogs: Annotated[list[Dog], Relation(fetch=FetchStrategy.NONE)]

        with pytest.raises(TypeError, match=r"Kennel.dogs is never loaded .* needs a default"):
            registry.register(Kennel)
        assert Kennel not in registry

    def test_unloaded_one_to_one_needs_default(self, registry: SchemaRegistry) -> None:
        class Basket(Entity):
            cat: Annotated[Cat, Relation(fetch=FetchStrategy.NONE)]

        with pytest.raises(TypeError, match="needs a default"):
            registry.register(Basket)

    def test_eager_relation_may_be_required(self, registry: SchemaRegistry) -> None:
        class Basket(Entity):
            cat: Cat

        assert registry.register(Basket).field("cat").fetch is FetchStrategy.EAGER


class TestDuplicates:
    def test_same_table_name_different_type(self, registry: SchemaRegistry) -> None:
        class Feline(Entity):
            __tablename__ = "cat"

            short_name: str

        registry.register(Cat)
        with pytest.raises(DuplicateSchemaError) as excinfo:
            registry.register(Feline)
        assert excinfo.value.table_name == "cat"
        assert excinfo.value.existing is Cat
        assert excinfo.value.incoming is Feline

    def test_clash_with_link_table(self, registry: SchemaRegistry) -> None:
        class UserDogs(Entity):
            name: str

        registry.register(User)
        with pytest.raises(DuplicateSchemaError, match="user_dogs"):
            registry.register(UserDogs)

    def test_clash_with_foreign_table_in_metadata(self) -> None:
        from sqlalchemy import Column, Table

        metadata = MetaData()
        Table("cat", metadata, Column("id", Integer, primary_key=True))
        with pytest.raises(DuplicateSchemaError):
            SchemaRegistry(metadata).register(Cat)
