from migration.engine import MigrationEngine
from migration.transformers import PostTransformer, slugify

__all__ = ["MigrationEngine", "PostTransformer", "slugify"]
