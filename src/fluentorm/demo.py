"""Demo entities and the canonical demo scenario.

Three users, each owning a cat and an ordered list of dogs; two of them
are hackers. :func:`run_demo` clears the users, inserts them, and asks
for ``hacker is true OR age == 4``.
"""

from __future__ import annotations

from fluentorm.domain.entity import Entity
from fluentorm.orm import Orm


class Cat(Entity):
    short_name: str


class Dog(Entity):
    name: str


class User(Entity):
    age: int
    name: str
    cat: Cat | None = None
    dogs: list[Dog] = []
    hacker: bool = False


def demo_users() -> list[User]:
    return [
        User(
            age=21,
            name="florent",
            cat=Cat(short_name="Java"),
            dogs=[Dog(name="Loulou")],
            hacker=True,
        ),
        User(
            age=30,
            name="kevin",
            cat=Cat(short_name="Futé"),
            dogs=[Dog(name="Darty")],
            hacker=True,
        ),
        User(
            age=10,
            name="alex",
            cat=Cat(short_name="Yellow"),
            dogs=[Dog(name="Darty"), Dog(name="Sasha")],
            hacker=False,
        ),
    ]


def run_demo(orm: Orm) -> list[User]:
    """Register, reset, seed, and query the demo users."""
    orm.register(User)
    orm.create_all()
    orm.delete_all(User)
    orm.add(demo_users())
    return orm.select(User).hacker.is_true().or_().age.equals_to(4).as_list()
