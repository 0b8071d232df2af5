"""Relay Namespace resource."""

from resources.relay.namespace import RelayNamespaceResource, RelayNamespacesApi

__all__ = ["RelayNamespaceResource", "RelayNamespacesApi"]
