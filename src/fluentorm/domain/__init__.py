"""Pure domain types: entities, relation metadata, and predicate trees."""

from fluentorm.domain.entity import PRIMARY_KEY, Entity, FetchStrategy, Relation
from fluentorm.domain.predicates import And, Comparison, Not, Operator, Or, Ordering, Predicate

__all__ = [
    "PRIMARY_KEY",
    "And",
    "Comparison",
    "Entity",
    "FetchStrategy",
    "Not",
    "Operator",
    "Or",
    "Ordering",
    "Predicate",
    "Relation",
]
