from repository.content_repository import (
    AggregateQuery,
    AggregateResult,
    ContentRepository,
    SQLAlchemyContentRepository,
    MODELS,
    NATURAL_KEYS,
)

__all__ = [
    "AggregateQuery",
    "AggregateResult",
    "ContentRepository",
    "SQLAlchemyContentRepository",
    "MODELS",
    "NATURAL_KEYS",
]
