"""
Resource Registry - Discovery and registration of resource providers.

Maps resource type names (e.g. 'azurerm_relay_namespace') to provider
classes and hands out provider instances.
"""

import logging
from importlib.metadata import entry_points
from typing import Any, Dict, List, Optional, Type

from resources.base import ResourceProvider
from validation import validate_schema

logger = logging.getLogger(__name__)

ENTRY_POINT_GROUP = "arm_providers.resources"


class ResourceRegistry:
    """
    Central registry for resource providers.

    Handles registration, lookup and instantiation of providers by
    resource type name.
    """

    def __init__(self):
        # Registered provider classes (not instantiated)
        self._providers: Dict[str, Type[ResourceProvider]] = {}

        # Cached provider metadata to avoid repeated instantiation
        self._provider_info: Dict[str, Dict[str, Any]] = {}

        # Instantiated providers
        self._instances: Dict[str, ResourceProvider] = {}

    def register(self, provider_class: Type[ResourceProvider]) -> None:
        """
        Register a resource provider class.

        Args:
            provider_class: The ResourceProvider subclass to register

        Raises:
            ValueError: If the provider declares an invalid configuration schema
        """
        # Create temporary instance to get the type name (only once at registration)
        temp_instance = provider_class()
        type_name = temp_instance.type_name

        is_valid, error = validate_schema(temp_instance.schema)
        if not is_valid:
            raise ValueError(f"Resource provider {type_name}: {error}")

        if type_name in self._providers:
            logger.warning(f"Overwriting existing resource provider: {type_name}")

        self._providers[type_name] = provider_class
        self._provider_info[type_name] = {
            "type_name": type_name,
            "force_new": list(temp_instance.force_new),
            "timeouts": temp_instance.timeouts,
        }
        self._instances.pop(type_name, None)
        logger.debug(f"Registered resource provider: {type_name}")

    def get(self, type_name: str) -> ResourceProvider:
        """
        Get a provider instance by resource type name.

        Raises:
            ValueError: If the type name is not registered
        """
        if type_name not in self._providers:
            available = ", ".join(sorted(self._providers.keys())) or "none"
            raise ValueError(
                f"Unknown resource type: {type_name}. Available types: {available}"
            )

        if type_name not in self._instances:
            self._instances[type_name] = self._providers[type_name]()

        return self._instances[type_name]

    def has(self, type_name: str) -> bool:
        """Check if a resource type is registered."""
        return type_name in self._providers

    def list_types(self) -> List[str]:
        """List all registered resource type names."""
        return sorted(self._providers.keys())

    def get_info(self, type_name: str) -> Optional[Dict[str, Any]]:
        """
        Get information about a registered provider.

        Returns:
            Dictionary with 'type_name', 'force_new' and 'timeouts', or None
        """
        return self._provider_info.get(type_name)


# Global registry instance
_registry: Optional[ResourceRegistry] = None


def get_registry() -> ResourceRegistry:
    """Get the global resource registry singleton."""
    global _registry
    if _registry is None:
        _registry = ResourceRegistry()
        register_builtin_providers(_registry)
    return _registry


def reset_registry() -> None:
    """Reset the global registry (mainly for testing)."""
    global _registry
    _registry = None


def register_builtin_providers(registry: ResourceRegistry) -> None:
    """
    Register the built-in providers and discover third-party providers
    via entry points.
    """
    from resources.machinelearning import MachineLearningWorkspaceResource
    from resources.relay import RelayNamespaceResource

    registry.register(RelayNamespaceResource)
    registry.register(MachineLearningWorkspaceResource)

    for ep in entry_points(group=ENTRY_POINT_GROUP):
        try:
            registry.register(ep.load())
        except Exception as e:
            logger.warning(f"Could not load resource provider {ep.name}: {e}")
