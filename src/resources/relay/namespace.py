"""
Relay Namespace resource provider.

Deletion is confirmed by re-reading the namespace: the delete operation's
own status handle does not report the final transition to not-found.
"""

import logging
from typing import Any, Dict

from arm_client import ResourceApi
from errors import RequestError
from reconciler import DeleteConfirmation
from resource_ids import AuthorizationRuleId, NamespaceId
from resources.base import (
    MINUTE,
    ProviderContext,
    ResourceData,
    ResourceProvider,
    ResourceTimeouts,
    expand_tags,
    flatten_tags,
    normalize_location,
)

logger = logging.getLogger(__name__)

API_VERSION = "2017-04-01"
ROOT_AUTHORIZATION_RULE = "RootManageSharedAccessKey"
SKU_STANDARD = "Standard"


class RelayNamespacesApi(ResourceApi):
    """Relay namespaces API binding."""

    def __init__(self, client):
        super().__init__(client, API_VERSION)

    async def list_keys(self, rule_id: AuthorizationRuleId) -> Dict[str, Any]:
        return await self.post(rule_id, "listKeys")


RELAY_NAMESPACE_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "required": ["name", "location", "resource_group_name", "sku_name"],
    "additionalProperties": False,
    "properties": {
        "name": {"type": "string", "minLength": 6, "maxLength": 50},
        "location": {"type": "string", "minLength": 1},
        "resource_group_name": {
            "type": "string",
            "minLength": 1,
            "maxLength": 90,
            "pattern": r"^[-\w._()]*[-\w_()]$",
        },
        "sku_name": {"type": "string", "enum": [SKU_STANDARD]},
        "tags": {
            "type": "object",
            "maxProperties": 50,
            "additionalProperties": {"type": "string", "maxLength": 256},
        },
    },
}


class RelayNamespaceResource(ResourceProvider):
    """Provider for azurerm_relay_namespace."""

    force_new = ["name", "location", "resource_group_name"]
    sensitive = [
        "primary_connection_string",
        "secondary_connection_string",
        "primary_key",
        "secondary_key",
    ]
    computed = ["metric_id"] + sensitive

    timeouts = ResourceTimeouts(
        create=30 * MINUTE, read=5 * MINUTE, update=30 * MINUTE, delete=60 * MINUTE
    )
    delete_confirmation = DeleteConfirmation.EXISTENCE_PROBE

    @property
    def type_name(self) -> str:
        return "azurerm_relay_namespace"

    @property
    def schema(self) -> Dict[str, Any]:
        return RELAY_NAMESPACE_SCHEMA

    def parse_id(self, value: str) -> NamespaceId:
        return NamespaceId.parse(value)

    def build_id(self, data: ResourceData, ctx: ProviderContext) -> NamespaceId:
        return NamespaceId(
            ctx.subscription_id, data.get("resource_group_name"), data.get("name")
        )

    def api(self, ctx: ProviderContext) -> RelayNamespacesApi:
        return RelayNamespacesApi(ctx.client)

    def expand(self, data: ResourceData, ctx: ProviderContext) -> Dict[str, Any]:
        logger.info("preparing arguments for Relay Namespace create/update.")
        sku_name = data.get("sku_name")
        return {
            "location": normalize_location(data.get("location")),
            "sku": {"name": sku_name, "tier": sku_name},
            "properties": {},
            "tags": expand_tags(data.get("tags")),
        }

    async def flatten(
        self, resource_id: NamespaceId, model: Dict[str, Any], ctx: ProviderContext
    ) -> Dict[str, Any]:
        rule_id = AuthorizationRuleId(
            resource_id.subscription_id,
            resource_id.resource_group_name,
            resource_id.namespace_name,
            ROOT_AUTHORIZATION_RULE,
        )
        try:
            keys = await self.api(ctx).list_keys(rule_id)
        except RequestError as e:
            raise e.with_context(f"listing keys for {resource_id}") from e

        sku = model.get("sku") or {}
        properties = model.get("properties") or {}

        return {
            "name": resource_id.namespace_name,
            "resource_group_name": resource_id.resource_group_name,
            "location": normalize_location(model.get("location")),
            "sku_name": sku.get("name"),
            "metric_id": properties.get("metricId"),
            "tags": flatten_tags(model.get("tags")),
            "primary_connection_string": keys.get("primaryConnectionString"),
            "primary_key": keys.get("primaryKey"),
            "secondary_connection_string": keys.get("secondaryConnectionString"),
            "secondary_key": keys.get("secondaryKey"),
        }
