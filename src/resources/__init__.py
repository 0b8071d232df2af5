"""
Resource providers.

Each provider owns one resource type. Built-in providers are registered by
resources.registry; further providers are discovered via Python entry points
(group: 'arm_providers.resources').
"""

from resources.base import (
    ChangeAction,
    ProviderContext,
    ResourceData,
    ResourcePlan,
    ResourceProvider,
    ResourceTimeouts,
)
from resources.registry import ResourceRegistry, get_registry

__all__ = [
    "ChangeAction",
    "ProviderContext",
    "ResourceData",
    "ResourcePlan",
    "ResourceProvider",
    "ResourceTimeouts",
    "ResourceRegistry",
    "get_registry",
]
