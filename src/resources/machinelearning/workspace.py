"""
Machine Learning Workspace resource provider.
"""

import logging
from typing import Any, Dict, Optional, Type

from arm_client import ResourceApi
from errors import ConfigurationError, ResourceIdError
from reconciler import DeleteConfirmation
from resource_ids import (
    ComponentId,
    KeyVaultId,
    RegistryId,
    ResourceId,
    StorageAccountId,
    SubnetId,
    UserAssignedIdentityId,
    WorkspaceId,
)
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
from resources.machinelearning.expanders import (
    SYSTEM_ASSIGNED,
    SYSTEM_ASSIGNED_USER_ASSIGNED,
    USER_ASSIGNED,
    expand_encryption,
    expand_feature_store,
    expand_identity,
    expand_managed_network,
    expand_serverless_compute,
    flatten_encryption,
    flatten_feature_store,
    flatten_identity,
    flatten_managed_network,
    flatten_serverless_compute,
)

logger = logging.getLogger(__name__)

API_VERSION = "2023-10-01"
SKU_BASIC = "Basic"
KIND_DEFAULT = "Default"
KIND_FEATURE_STORE = "FeatureStore"
ISOLATION_MODES = ["AllowInternetOutbound", "AllowOnlyApprovedOutbound", "Disabled"]


class WorkspacesApi(ResourceApi):
    """Machine Learning workspaces API binding."""

    def __init__(self, client, force_to_purge: bool = False):
        super().__init__(client, API_VERSION)
        self.force_to_purge = force_to_purge

    def delete_params(self) -> Dict[str, str]:
        if self.force_to_purge:
            return {"forceToPurge": "true"}
        return {}


def _block(properties: Dict[str, Any], required=()) -> Dict[str, Any]:
    return {
        "type": "array",
        "maxItems": 1,
        "items": {
            "type": "object",
            "additionalProperties": False,
            "required": list(required),
            "properties": properties,
        },
    }


WORKSPACE_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "required": [
        "name",
        "location",
        "resource_group_name",
        "application_insights_id",
        "key_vault_id",
        "storage_account_id",
        "identity",
    ],
    "additionalProperties": False,
    "properties": {
        "name": {"type": "string", "pattern": r"^[A-Za-z0-9][\w-]{2,32}$"},
        "location": {"type": "string", "minLength": 1},
        "resource_group_name": {
            "type": "string",
            "minLength": 1,
            "maxLength": 90,
            "pattern": r"^[-\w._()]*[-\w_()]$",
        },
        "application_insights_id": {"type": "string"},
        "key_vault_id": {"type": "string"},
        "storage_account_id": {"type": "string"},
        "identity": dict(
            _block(
                {
                    "type": {
                        "type": "string",
                        "enum": [
                            SYSTEM_ASSIGNED,
                            USER_ASSIGNED,
                            SYSTEM_ASSIGNED_USER_ASSIGNED,
                        ],
                    },
                    "identity_ids": {
                        "type": "array",
                        "items": {"type": "string"},
                        "uniqueItems": True,
                    },
                },
                required=["type"],
            ),
            minItems=1,
        ),
        "kind": {
            "type": "string",
            "enum": [KIND_DEFAULT, KIND_FEATURE_STORE],
            "default": KIND_DEFAULT,
        },
        "feature_store": _block(
            {
                "computer_spark_runtime_version": {"type": "string"},
                "offline_connection_name": {"type": "string"},
                "online_connection_name": {"type": "string"},
            }
        ),
        "primary_user_assigned_identity": {"type": "string"},
        "container_registry_id": {"type": "string"},
        "public_network_access_enabled": {"type": "boolean"},
        "image_build_compute_name": {"type": "string"},
        "description": {"type": "string"},
        "encryption": _block(
            {
                "key_vault_id": {"type": "string"},
                "key_id": {"type": "string", "pattern": r"^https?://"},
                "user_assigned_identity_id": {"type": "string"},
            },
            required=["key_vault_id", "key_id"],
        ),
        "managed_network": _block(
            {"isolation_mode": {"type": "string", "enum": ISOLATION_MODES}}
        ),
        "friendly_name": {"type": "string"},
        "high_business_impact": {"type": "boolean"},
        "sku_name": {"type": "string", "enum": [SKU_BASIC], "default": SKU_BASIC},
        "v1_legacy_mode_enabled": {"type": "boolean", "default": False},
        "serverless_compute": _block(
            {
                "subnet_id": {"type": "string"},
                "public_ip_enabled": {"type": "boolean", "default": False},
            }
        ),
        "tags": {
            "type": "object",
            "maxProperties": 50,
            "additionalProperties": {"type": "string", "maxLength": 256},
        },
    },
}

# Attribute -> ID type its value must parse as
ID_ATTRIBUTES: Dict[str, Type[ResourceId]] = {
    "application_insights_id": ComponentId,
    "key_vault_id": KeyVaultId,
    "storage_account_id": StorageAccountId,
    "container_registry_id": RegistryId,
    "primary_user_assigned_identity": UserAssignedIdentityId,
}


def _drop_none(values: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in values.items() if v is not None}


def _canonical(id_type: Type[ResourceId], value: Optional[str]) -> str:
    if not value:
        return ""
    return id_type.parse(value, insensitive=True).id()


class MachineLearningWorkspaceResource(ResourceProvider):
    """Provider for azurerm_machine_learning_workspace."""

    force_new = [
        "name",
        "location",
        "resource_group_name",
        "application_insights_id",
        "key_vault_id",
        "storage_account_id",
        "container_registry_id",
        "encryption",
        "high_business_impact",
    ]
    case_insensitive = [
        "application_insights_id",
        "key_vault_id",
        "storage_account_id",
        "container_registry_id",
        "user_assigned_identity_id",
    ]
    computed = ["discovery_url", "workspace_id"]

    timeouts = ResourceTimeouts(
        create=30 * MINUTE, read=5 * MINUTE, update=30 * MINUTE, delete=30 * MINUTE
    )
    delete_confirmation = DeleteConfirmation.OPERATION

    @property
    def type_name(self) -> str:
        return "azurerm_machine_learning_workspace"

    @property
    def schema(self) -> Dict[str, Any]:
        return WORKSPACE_SCHEMA

    def parse_id(self, value: str) -> WorkspaceId:
        return WorkspaceId.parse(value)

    def build_id(self, data: ResourceData, ctx: ProviderContext) -> WorkspaceId:
        return WorkspaceId(
            ctx.subscription_id, data.get("resource_group_name"), data.get("name")
        )

    def api(self, ctx: ProviderContext) -> WorkspacesApi:
        return WorkspacesApi(
            ctx.client,
            force_to_purge=ctx.features.purge_soft_deleted_workspace_on_destroy,
        )

    def validate(self, config: Dict[str, Any]) -> None:
        super().validate(config)

        for attribute, id_type in ID_ATTRIBUTES.items():
            if config.get(attribute):
                self._validate_id(attribute, id_type, config[attribute])

        for block in config.get("encryption") or []:
            self._validate_id(
                "encryption.key_vault_id", KeyVaultId, block["key_vault_id"]
            )
            if block.get("user_assigned_identity_id"):
                self._validate_id(
                    "encryption.user_assigned_identity_id",
                    UserAssignedIdentityId,
                    block["user_assigned_identity_id"],
                )

        for block in config.get("serverless_compute") or []:
            if block.get("subnet_id"):
                self._validate_id(
                    "serverless_compute.subnet_id", SubnetId, block["subnet_id"]
                )

    def _validate_id(
        self, attribute: str, id_type: Type[ResourceId], value: str
    ) -> None:
        try:
            id_type.parse(value)
        except ResourceIdError as e:
            raise ConfigurationError(f"`{attribute}`: {e.message}") from e

    def expand(self, data: ResourceData, ctx: ProviderContext) -> Dict[str, Any]:
        public_network_access_enabled = bool(
            data.get("public_network_access_enabled", False)
        )
        sku_name = data.get("sku_name", SKU_BASIC)
        kind = data.get("kind", KIND_DEFAULT)

        properties: Dict[str, Any] = {
            "applicationInsights": data.get("application_insights_id"),
            "encryption": expand_encryption(data.get("encryption")),
            "keyVault": data.get("key_vault_id"),
            "managedNetwork": expand_managed_network(data.get("managed_network")),
            "publicNetworkAccess": (
                "Enabled" if public_network_access_enabled else "Disabled"
            ),
            "storageAccount": data.get("storage_account_id"),
            "v1LegacyMode": bool(data.get("v1_legacy_mode_enabled", False)),
        }

        serverless_compute = expand_serverless_compute(data.get("serverless_compute"))
        if serverless_compute is not None:
            no_public_ip = serverless_compute["serverlessComputeNoPublicIP"]
            custom_subnet = serverless_compute.get("serverlessComputeCustomSubnet")
            if (
                no_public_ip
                and custom_subnet is None
                and not public_network_access_enabled
            ):
                raise ConfigurationError(
                    "`public_ip_enabled` must be set to `true` if `subnet_id` is not "
                    "set and `public_network_access_enabled` is `false`"
                )

            if custom_subnet is None:
                old, new = data.get_change("serverless_compute", [])
                old_public_ip = bool(old and old[0] and old[0].get("public_ip_enabled"))
                new_public_ip = bool(new and new[0] and new[0].get("public_ip_enabled"))
                if old_public_ip and not new_public_ip:
                    raise ConfigurationError(
                        "Not supported to update `public_ip_enabled` from `true` to "
                        "`false` when `subnet_id` is null or empty"
                    )
        properties["serverlessComputeSettings"] = serverless_compute

        properties.update(
            description=data.get("description"),
            friendlyName=data.get("friendly_name"),
            containerRegistry=data.get("container_registry_id"),
            hbiWorkspace=data.get("high_business_impact"),
            imageBuildCompute=data.get("image_build_compute_name"),
            primaryUserAssignedIdentity=data.get("primary_user_assigned_identity"),
        )

        feature_store = expand_feature_store(data.get("feature_store"))
        if kind.lower() == KIND_DEFAULT.lower():
            if feature_store is not None:
                raise ConfigurationError(
                    "`feature_store` can only be set when `kind` is `FeatureStore`"
                )
        else:
            if feature_store is None:
                raise ConfigurationError(
                    "`feature_store` can not be empty when `kind` is `FeatureStore`"
                )
            properties["featureStoreSettings"] = feature_store

        return {
            "name": data.get("name"),
            "location": normalize_location(data.get("location")),
            "tags": expand_tags(data.get("tags")),
            "sku": {"name": sku_name, "tier": sku_name},
            "kind": kind,
            "identity": expand_identity(data.get("identity")),
            "properties": _drop_none(properties),
        }

    async def flatten(
        self, resource_id: WorkspaceId, model: Dict[str, Any], ctx: ProviderContext
    ) -> Dict[str, Any]:
        properties = model.get("properties") or {}
        sku = model.get("sku") or {}

        attributes: Dict[str, Any] = {
            "name": resource_id.workspace_name,
            "resource_group_name": resource_id.resource_group_name,
            "location": normalize_location(model.get("location")),
            "sku_name": sku.get("name"),
            "kind": model.get("kind"),
            "identity": flatten_identity(model.get("identity")),
            "tags": flatten_tags(model.get("tags")),
        }

        attributes.update(
            application_insights_id=_canonical(
                ComponentId, properties.get("applicationInsights")
            ),
            key_vault_id=_canonical(KeyVaultId, properties.get("keyVault")),
            storage_account_id=properties.get("storageAccount"),
            container_registry_id=properties.get("containerRegistry"),
            description=properties.get("description"),
            friendly_name=properties.get("friendlyName"),
            high_business_impact=properties.get("hbiWorkspace"),
            image_build_compute_name=properties.get("imageBuildCompute"),
            discovery_url=properties.get("discoveryUrl"),
            primary_user_assigned_identity=properties.get(
                "primaryUserAssignedIdentity"
            ),
            public_network_access_enabled=(
                properties.get("publicNetworkAccess") == "Enabled"
            ),
            v1_legacy_mode_enabled=properties.get("v1LegacyMode"),
            workspace_id=properties.get("workspaceId"),
            managed_network=flatten_managed_network(properties.get("managedNetwork")),
            serverless_compute=flatten_serverless_compute(
                properties.get("serverlessComputeSettings")
            ),
            feature_store=flatten_feature_store(
                properties.get("featureStoreSettings")
            ),
            encryption=flatten_encryption(properties.get("encryption")),
        )
        return attributes
