"""Unit tests for the machine learning workspace resource provider."""

import pytest

from conftest import arm_id
from errors import ConfigurationError, RequestError, ResourceIdError
from reconciler import DeleteConfirmation
from resources.base import ChangeAction, ResourceData
from resources.machinelearning import MachineLearningWorkspaceResource, WorkspacesApi
from resources.machinelearning.expanders import (
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

IDENTITY_ID = arm_id(
    "Microsoft.ManagedIdentity", "userAssignedIdentities", "example-uai"
)
SUBNET_ID = arm_id("Microsoft.Network", "virtualNetworks", "vnet", "subnets", "ml")
KEY_ID = "https://example-kv.vault.azure.net/keys/cmk/0123456789abcdef"


@pytest.fixture
def provider():
    return MachineLearningWorkspaceResource()


def expand(provider, provider_ctx, config, prior=None):
    data = ResourceData(attributes=provider.with_defaults(config), prior=prior)
    return provider.expand(data, provider_ctx)


# ==================== Expander Tests ====================


class TestIdentity:
    """Tests for identity expand/flatten."""

    def test_system_assigned(self):
        assert expand_identity([{"type": "SystemAssigned"}]) == {
            "type": "SystemAssigned"
        }

    def test_combined_type_uses_api_spelling(self):
        result = expand_identity(
            [{"type": "SystemAssigned, UserAssigned", "identity_ids": [IDENTITY_ID]}]
        )
        assert result["type"] == "SystemAssigned,UserAssigned"
        assert result["userAssignedIdentities"] == {IDENTITY_ID: {}}

    def test_required(self):
        with pytest.raises(ConfigurationError, match="`identity` must be specified"):
            expand_identity([])

    def test_user_assigned_requires_ids(self):
        with pytest.raises(ConfigurationError, match="must be specified"):
            expand_identity([{"type": "UserAssigned"}])

    def test_ids_require_user_assigned(self):
        with pytest.raises(ConfigurationError, match="can only be specified"):
            expand_identity(
                [{"type": "SystemAssigned", "identity_ids": [IDENTITY_ID]}]
            )

    def test_flatten(self):
        lower_case_id = IDENTITY_ID.replace("resourceGroups", "resourcegroups")
        result = flatten_identity(
            {
                "type": "SystemAssigned,UserAssigned",
                "principalId": "principal",
                "tenantId": "tenant",
                "userAssignedIdentities": {lower_case_id: {"clientId": "c"}},
            }
        )
        assert result == [
            {
                "type": "SystemAssigned, UserAssigned",
                "identity_ids": [IDENTITY_ID],
                "principal_id": "principal",
                "tenant_id": "tenant",
            }
        ]

    @pytest.mark.parametrize("model", [None, {}, {"type": "None"}])
    def test_flatten_empty(self, model):
        assert flatten_identity(model) == []

    def test_flatten_invalid_identity_id(self):
        with pytest.raises(ResourceIdError, match="user assigned identity"):
            flatten_identity(
                {"type": "UserAssigned", "userAssignedIdentities": {"bad": {}}}
            )


class TestEncryption:
    """Tests for encryption expand/flatten."""

    def test_expand(self):
        key_vault_id = arm_id("Microsoft.KeyVault", "vaults", "example-kv")
        result = expand_encryption(
            [
                {
                    "key_vault_id": key_vault_id,
                    "key_id": KEY_ID,
                    "user_assigned_identity_id": IDENTITY_ID,
                }
            ]
        )
        assert result == {
            "identity": {"userAssignedIdentity": IDENTITY_ID},
            "keyVaultProperties": {
                "keyVaultArmId": key_vault_id,
                "keyIdentifier": KEY_ID,
            },
            "status": "Enabled",
        }

    def test_expand_absent(self):
        assert expand_encryption(None) is None
        assert expand_encryption([]) is None

    def test_flatten_disabled(self):
        assert flatten_encryption({"status": "Disabled"}) == []

    def test_flatten(self):
        result = flatten_encryption(
            {
                "status": "Enabled",
                "keyVaultProperties": {"keyVaultArmId": "kv", "keyIdentifier": KEY_ID},
                "identity": {"userAssignedIdentity": IDENTITY_ID},
            }
        )
        assert result == [
            {
                "user_assigned_identity_id": IDENTITY_ID,
                "key_vault_id": "kv",
                "key_id": KEY_ID,
            }
        ]


class TestOtherBlocks:
    """Tests for feature store, managed network and serverless compute blocks."""

    def test_feature_store_round_trip(self):
        block = {
            "computer_spark_runtime_version": "3.3",
            "offline_connection_name": "offline",
            "online_connection_name": "online",
        }
        expanded = expand_feature_store([block])
        assert expanded == {
            "computeRuntime": {"sparkRuntimeVersion": "3.3"},
            "offlineStoreConnectionName": "offline",
            "onlineStoreConnectionName": "online",
        }
        assert flatten_feature_store(expanded) == [block]

    def test_feature_store_flatten_absent(self):
        assert flatten_feature_store(None) == []

    def test_managed_network(self):
        expanded = expand_managed_network([{"isolation_mode": "Disabled"}])
        assert expanded == {"isolationMode": "Disabled"}
        assert flatten_managed_network(expanded) == [{"isolation_mode": "Disabled"}]
        assert flatten_managed_network(None) == []

    def test_serverless_compute_public_ip_is_inverted(self):
        expanded = expand_serverless_compute(
            [{"subnet_id": SUBNET_ID, "public_ip_enabled": True}]
        )
        assert expanded == {
            "serverlessComputeNoPublicIP": False,
            "serverlessComputeCustomSubnet": SUBNET_ID,
        }
        assert flatten_serverless_compute(expanded) == [
            {"subnet_id": SUBNET_ID, "public_ip_enabled": True}
        ]

    def test_serverless_compute_defaults_to_no_public_ip(self):
        assert expand_serverless_compute([{}]) == {
            "serverlessComputeNoPublicIP": True
        }


# ==================== Provider Tests ====================


class TestWorkspaceDefinition:
    """Tests for the provider's static definition."""

    def test_type_name(self, provider):
        assert provider.type_name == "azurerm_machine_learning_workspace"

    def test_confirms_delete_by_operation(self, provider):
        assert provider.delete_confirmation is DeleteConfirmation.OPERATION

    def test_defaults(self, provider, workspace_config):
        config = provider.with_defaults(workspace_config)
        assert config["kind"] == "Default"
        assert config["sku_name"] == "Basic"
        assert config["v1_legacy_mode_enabled"] is False

    def test_with_defaults_does_not_mutate(self, provider, workspace_config):
        provider.with_defaults(workspace_config)
        assert "kind" not in workspace_config


class TestWorkspaceValidate:
    """Tests for configuration validation."""

    def test_valid(self, provider, workspace_config):
        provider.validate(provider.with_defaults(workspace_config))

    def test_invalid_key_vault_id(self, provider, workspace_config):
        workspace_config["key_vault_id"] = arm_id(
            "Microsoft.Storage", "storageAccounts", "examplesa"
        )
        with pytest.raises(ConfigurationError, match="`key_vault_id`"):
            provider.validate(workspace_config)

    def test_invalid_encryption_identity(self, provider, workspace_config):
        workspace_config["encryption"] = [
            {
                "key_vault_id": workspace_config["key_vault_id"],
                "key_id": KEY_ID,
                "user_assigned_identity_id": "not-an-id",
            }
        ]
        with pytest.raises(
            ConfigurationError, match="encryption.user_assigned_identity_id"
        ):
            provider.validate(workspace_config)

    def test_invalid_subnet(self, provider, workspace_config):
        workspace_config["serverless_compute"] = [{"subnet_id": "subnet"}]
        with pytest.raises(ConfigurationError, match="serverless_compute.subnet_id"):
            provider.validate(workspace_config)

    def test_invalid_name(self, provider, workspace_config):
        workspace_config["name"] = "-bad"
        with pytest.raises(ConfigurationError, match="name"):
            provider.validate(workspace_config)

    def test_invalid_isolation_mode(self, provider, workspace_config):
        workspace_config["managed_network"] = [{"isolation_mode": "Open"}]
        with pytest.raises(ConfigurationError, match="managed_network"):
            provider.validate(workspace_config)


class TestWorkspaceExpand:
    """Tests for building the request document."""

    def test_minimal(self, provider, provider_ctx, workspace_config):
        body = expand(provider, provider_ctx, workspace_config)

        assert body["name"] == "example-mlw"
        assert body["location"] == "westeurope"
        assert body["kind"] == "Default"
        assert body["sku"] == {"name": "Basic", "tier": "Basic"}
        assert body["identity"] == {"type": "SystemAssigned"}
        assert body["properties"] == {
            "applicationInsights": workspace_config["application_insights_id"],
            "keyVault": workspace_config["key_vault_id"],
            "storageAccount": workspace_config["storage_account_id"],
            "publicNetworkAccess": "Disabled",
            "v1LegacyMode": False,
        }

    def test_optional_properties(self, provider, provider_ctx, workspace_config):
        workspace_config.update(
            description="ml workspace",
            friendly_name="Example",
            high_business_impact=True,
            public_network_access_enabled=True,
            image_build_compute_name="builder",
        )
        properties = expand(provider, provider_ctx, workspace_config)["properties"]

        assert properties["description"] == "ml workspace"
        assert properties["friendlyName"] == "Example"
        assert properties["hbiWorkspace"] is True
        assert properties["publicNetworkAccess"] == "Enabled"
        assert properties["imageBuildCompute"] == "builder"

    def test_feature_store_requires_kind(
        self, provider, provider_ctx, workspace_config
    ):
        workspace_config["feature_store"] = [{"offline_connection_name": "offline"}]
        with pytest.raises(ConfigurationError, match="can only be set when `kind`"):
            expand(provider, provider_ctx, workspace_config)

    def test_feature_store_kind_requires_block(
        self, provider, provider_ctx, workspace_config
    ):
        workspace_config["kind"] = "FeatureStore"
        with pytest.raises(ConfigurationError, match="can not be empty"):
            expand(provider, provider_ctx, workspace_config)

    def test_feature_store(self, provider, provider_ctx, workspace_config):
        workspace_config["kind"] = "FeatureStore"
        workspace_config["feature_store"] = [{"online_connection_name": "online"}]
        body = expand(provider, provider_ctx, workspace_config)

        assert body["kind"] == "FeatureStore"
        assert body["properties"]["featureStoreSettings"] == {
            "onlineStoreConnectionName": "online"
        }

    def test_serverless_needs_public_ip_without_subnet(
        self, provider, provider_ctx, workspace_config
    ):
        workspace_config["serverless_compute"] = [{"public_ip_enabled": False}]
        with pytest.raises(ConfigurationError, match="must be set to `true`"):
            expand(provider, provider_ctx, workspace_config)

    def test_serverless_without_subnet_on_public_workspace(
        self, provider, provider_ctx, workspace_config
    ):
        workspace_config["public_network_access_enabled"] = True
        workspace_config["serverless_compute"] = [{"public_ip_enabled": False}]
        properties = expand(provider, provider_ctx, workspace_config)["properties"]

        assert properties["serverlessComputeSettings"] == {
            "serverlessComputeNoPublicIP": True
        }

    def test_serverless_public_ip_cannot_be_disabled_without_subnet(
        self, provider, provider_ctx, workspace_config
    ):
        workspace_config["public_network_access_enabled"] = True
        workspace_config["serverless_compute"] = [{"public_ip_enabled": False}]
        prior = {"serverless_compute": [{"public_ip_enabled": True}]}

        with pytest.raises(ConfigurationError, match="from `true` to `false`"):
            expand(provider, provider_ctx, workspace_config, prior=prior)

    def test_serverless_with_subnet(self, provider, provider_ctx, workspace_config):
        workspace_config["serverless_compute"] = [{"subnet_id": SUBNET_ID}]
        properties = expand(provider, provider_ctx, workspace_config)["properties"]

        assert properties["serverlessComputeSettings"] == {
            "serverlessComputeNoPublicIP": True,
            "serverlessComputeCustomSubnet": SUBNET_ID,
        }


class TestWorkspacePlan:
    """Tests for change classification."""

    def prior(self, workspace_config):
        prior = dict(workspace_config)
        prior.update(
            location="westeurope",
            kind="Default",
            sku_name="Basic",
            v1_legacy_mode_enabled=False,
            identity=[
                {
                    "type": "SystemAssigned",
                    "identity_ids": [],
                    "principal_id": "principal",
                    "tenant_id": "tenant",
                }
            ],
            discovery_url="https://westeurope.api.azureml.ms/discovery",
            workspace_id="0000",
        )
        return prior

    def test_no_changes(self, provider, workspace_config):
        plan = provider.plan(self.prior(workspace_config), workspace_config)
        assert plan.action is ChangeAction.NO_OP

    def test_case_insensitive_ids(self, provider, workspace_config):
        prior = self.prior(workspace_config)
        workspace_config["key_vault_id"] = workspace_config["key_vault_id"].upper()
        plan = provider.plan(prior, workspace_config)
        assert plan.action is ChangeAction.NO_OP

    def test_description_updates_in_place(self, provider, workspace_config):
        prior = self.prior(workspace_config)
        workspace_config["description"] = "new"
        plan = provider.plan(prior, workspace_config)
        assert plan.action is ChangeAction.UPDATE
        assert plan.changed == ["description"]

    def test_storage_account_change_replaces(self, provider, workspace_config):
        prior = self.prior(workspace_config)
        workspace_config["storage_account_id"] = arm_id(
            "Microsoft.Storage", "storageAccounts", "othersa"
        )
        plan = provider.plan(prior, workspace_config)
        assert plan.action is ChangeAction.REPLACE
        assert plan.replace_reasons == ["storage_account_id"]


@pytest.mark.asyncio
class TestWorkspaceLifecycle:
    """Tests for create/read/delete against a fake control plane."""

    async def test_create(self, provider, provider_ctx, fake_arm, workspace_config):
        state = await provider.create(
            ResourceData(attributes=workspace_config), provider_ctx
        )

        assert state.attributes["name"] == "example-mlw"
        assert state.attributes["kind"] == "Default"
        assert state.attributes["sku_name"] == "Basic"
        assert state.attributes["public_network_access_enabled"] is False
        assert state.attributes["identity"][0]["type"] == "SystemAssigned"
        assert state.attributes["key_vault_id"] == workspace_config["key_vault_id"]
        assert state.attributes["encryption"] == []

        puts = fake_arm.calls_for("PUT")
        assert len(puts) == 1
        assert puts[0][3]["properties"]["v1LegacyMode"] is False

    async def test_create_rejects_invalid_combination(
        self, provider, provider_ctx, fake_arm, workspace_config
    ):
        workspace_config["kind"] = "FeatureStore"

        with pytest.raises(ConfigurationError):
            await provider.create(
                ResourceData(attributes=workspace_config), provider_ctx
            )

        assert fake_arm.calls_for("PUT") == []

    async def test_read_canonicalises_ids(
        self, provider, provider_ctx, fake_arm, workspace_id, workspace_config
    ):
        key_vault = workspace_config["key_vault_id"]
        fake_arm.resources[workspace_id.id()] = {
            "location": "westeurope",
            "kind": "Default",
            "sku": {"name": "Basic"},
            "identity": {"type": "SystemAssigned"},
            "properties": {
                "keyVault": key_vault.replace("resourceGroups", "resourcegroups"),
                "applicationInsights": workspace_config["application_insights_id"],
                "storageAccount": workspace_config["storage_account_id"],
                "discoveryUrl": "https://westeurope.api.azureml.ms/discovery",
                "workspaceId": "0000",
                "publicNetworkAccess": "Enabled",
            },
        }

        state = await provider.read(ResourceData(id=workspace_id.id()), provider_ctx)

        assert state.attributes["key_vault_id"] == key_vault
        assert state.attributes["discovery_url"].startswith("https://")
        assert state.attributes["workspace_id"] == "0000"
        assert state.attributes["public_network_access_enabled"] is True

    async def test_delete(self, provider, provider_ctx, fake_arm, workspace_id):
        fake_arm.resources[workspace_id.id()] = {"properties": {}}

        await provider.delete(ResourceData(id=workspace_id.id()), provider_ctx)

        deletes = fake_arm.calls_for("DELETE")
        assert deletes[0][2] == {}
        assert fake_arm.calls_for("GET") == []

    async def test_delete_purges_when_enabled(
        self, provider, provider_ctx, fake_arm, workspace_id
    ):
        provider_ctx.features.purge_soft_deleted_workspace_on_destroy = True

        await provider.delete(ResourceData(id=workspace_id.id()), provider_ctx)

        assert fake_arm.calls_for("DELETE")[0][2] == {"forceToPurge": "true"}

    async def test_delete_rejected(
        self, provider, provider_ctx, fake_arm, workspace_id
    ):
        fake_arm.errors[("DELETE", workspace_id.id())] = RequestError(
            "unexpected status 409 with error: Conflict: compute still attached",
            status=409,
            code="Conflict",
        )

        with pytest.raises(RequestError) as exc_info:
            await provider.delete(ResourceData(id=workspace_id.id()), provider_ctx)

        assert exc_info.value.code == "Conflict"
        assert exc_info.value.message.startswith(f"deleting {workspace_id}")


class TestWorkspacesApi:
    """Tests for the workspaces API binding."""

    def test_delete_params(self, fake_arm):
        assert WorkspacesApi(fake_arm).delete_params() == {}
        assert WorkspacesApi(fake_arm, force_to_purge=True).delete_params() == {
            "forceToPurge": "true"
        }
