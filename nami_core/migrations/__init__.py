"""Registry of persisted-state migration scripts, one module per version."""

from nami_core.migration import MigrationRegistry
from nami_core.migrations import v1_0_0

REGISTRY = MigrationRegistry([
    v1_0_0.script,
])

__all__ = ["REGISTRY"]
