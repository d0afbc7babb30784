"""Infrastructure: project configuration and the override file."""

from valence.infrastructure.config import ValenceConfig, load_config
from valence.infrastructure.overrides import (
    Override,
    OverrideRegistry,
    OverrideStatistics,
    OverrideStatus,
)

__all__ = [
    "Override",
    "OverrideRegistry",
    "OverrideStatistics",
    "OverrideStatus",
    "ValenceConfig",
    "load_config",
]
