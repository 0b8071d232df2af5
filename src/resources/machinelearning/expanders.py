"""
Expand/flatten helpers for Machine Learning Workspace nested blocks.

Blocks are lists holding at most one mapping, matching the configuration
schema. Expand helpers return None for an absent block; flatten helpers
return an empty list.
"""

from typing import Any, Dict, List, Optional

from errors import ConfigurationError, ResourceIdError
from resource_ids import UserAssignedIdentityId

SYSTEM_ASSIGNED = "SystemAssigned"
USER_ASSIGNED = "UserAssigned"
SYSTEM_ASSIGNED_USER_ASSIGNED = "SystemAssigned, UserAssigned"

# The API spells the combined identity type without the space
_API_SYSTEM_ASSIGNED_USER_ASSIGNED = "SystemAssigned,UserAssigned"

ENCRYPTION_STATUS_ENABLED = "Enabled"


def _first_block(blocks: Optional[List[Any]]) -> Optional[Dict[str, Any]]:
    if not blocks or blocks[0] is None:
        return None
    return blocks[0]


def _canonical_identity_id(value: str) -> str:
    try:
        return UserAssignedIdentityId.parse(value, insensitive=True).id()
    except ResourceIdError as e:
        raise ResourceIdError(f"parsing user assigned identity {value!r}: {e}") from e


def expand_identity(blocks: Optional[List[Any]]) -> Dict[str, Any]:
    """
    Expand the required identity block.

    Raises:
        ConfigurationError: If identity_ids do not agree with the type.
    """
    raw = _first_block(blocks)
    if raw is None:
        raise ConfigurationError("`identity` must be specified")

    identity_type = raw.get("type")
    identity_ids = raw.get("identity_ids") or []
    includes_user_assigned = identity_type in (
        USER_ASSIGNED,
        SYSTEM_ASSIGNED_USER_ASSIGNED,
    )

    if identity_ids and not includes_user_assigned:
        raise ConfigurationError(
            "`identity_ids` can only be specified when `type` includes `UserAssigned`"
        )
    if includes_user_assigned and not identity_ids:
        raise ConfigurationError(
            "`identity_ids` must be specified when `type` includes `UserAssigned`"
        )

    out: Dict[str, Any] = {"type": identity_type}
    if identity_type == SYSTEM_ASSIGNED_USER_ASSIGNED:
        out["type"] = _API_SYSTEM_ASSIGNED_USER_ASSIGNED
    if identity_ids:
        # values are intentionally empty
        out["userAssignedIdentities"] = {i: {} for i in identity_ids}
    return out


def flatten_identity(model: Optional[Dict[str, Any]]) -> List[Dict[str, Any]]:
    if not model or model.get("type") in (None, "None"):
        return []

    identity_type = model["type"]
    if identity_type.replace(" ", "") == _API_SYSTEM_ASSIGNED_USER_ASSIGNED:
        identity_type = SYSTEM_ASSIGNED_USER_ASSIGNED

    identity_ids = sorted(
        _canonical_identity_id(k) for k in (model.get("userAssignedIdentities") or {})
    )

    return [
        {
            "type": identity_type,
            "identity_ids": identity_ids,
            "principal_id": model.get("principalId") or "",
            "tenant_id": model.get("tenantId") or "",
        }
    ]


def expand_encryption(blocks: Optional[List[Any]]) -> Optional[Dict[str, Any]]:
    raw = _first_block(blocks)
    if raw is None:
        return None

    out: Dict[str, Any] = {
        "identity": {"userAssignedIdentity": None},
        "keyVaultProperties": {
            "keyVaultArmId": raw.get("key_vault_id"),
            "keyIdentifier": raw.get("key_id"),
        },
        "status": ENCRYPTION_STATUS_ENABLED,
    }
    if raw.get("user_assigned_identity_id"):
        out["identity"]["userAssignedIdentity"] = raw["user_assigned_identity_id"]
    return out


def flatten_encryption(model: Optional[Dict[str, Any]]) -> List[Dict[str, Any]]:
    if not model or model.get("status") != ENCRYPTION_STATUS_ENABLED:
        return []

    key_vault = model.get("keyVaultProperties") or {}
    identity = model.get("identity") or {}

    user_assigned_identity_id = ""
    if identity.get("userAssignedIdentity"):
        user_assigned_identity_id = _canonical_identity_id(
            identity["userAssignedIdentity"]
        )

    return [
        {
            "user_assigned_identity_id": user_assigned_identity_id,
            "key_vault_id": key_vault.get("keyVaultArmId") or "",
            "key_id": key_vault.get("keyIdentifier") or "",
        }
    ]


def expand_feature_store(blocks: Optional[List[Any]]) -> Optional[Dict[str, Any]]:
    raw = _first_block(blocks)
    if raw is None:
        return None

    out: Dict[str, Any] = {}
    if raw.get("computer_spark_runtime_version"):
        out["computeRuntime"] = {
            "sparkRuntimeVersion": raw["computer_spark_runtime_version"]
        }
    if raw.get("offline_connection_name"):
        out["offlineStoreConnectionName"] = raw["offline_connection_name"]
    if raw.get("online_connection_name"):
        out["onlineStoreConnectionName"] = raw["online_connection_name"]
    return out


def flatten_feature_store(model: Optional[Dict[str, Any]]) -> List[Dict[str, Any]]:
    if model is None:
        return []

    compute_runtime = model.get("computeRuntime") or {}
    return [
        {
            "computer_spark_runtime_version": compute_runtime.get(
                "sparkRuntimeVersion"
            )
            or "",
            "offline_connection_name": model.get("offlineStoreConnectionName") or "",
            "online_connection_name": model.get("onlineStoreConnectionName") or "",
        }
    ]


def expand_managed_network(blocks: Optional[List[Any]]) -> Optional[Dict[str, Any]]:
    raw = _first_block(blocks)
    if raw is None:
        return None
    return {"isolationMode": raw.get("isolation_mode")}


def flatten_managed_network(model: Optional[Dict[str, Any]]) -> List[Dict[str, Any]]:
    if model is None:
        return []
    out = {}
    if model.get("isolationMode") is not None:
        out["isolation_mode"] = model["isolationMode"]
    return [out]


def expand_serverless_compute(
    blocks: Optional[List[Any]],
) -> Optional[Dict[str, Any]]:
    raw = _first_block(blocks)
    if raw is None:
        return None

    out: Dict[str, Any] = {
        "serverlessComputeNoPublicIP": not raw.get("public_ip_enabled", False)
    }
    if raw.get("subnet_id"):
        out["serverlessComputeCustomSubnet"] = raw["subnet_id"]
    return out


def flatten_serverless_compute(
    model: Optional[Dict[str, Any]],
) -> List[Dict[str, Any]]:
    if model is None:
        return []
    out: Dict[str, Any] = {}
    if model.get("serverlessComputeCustomSubnet") is not None:
        out["subnet_id"] = model["serverlessComputeCustomSubnet"]
    if model.get("serverlessComputeNoPublicIP") is not None:
        out["public_ip_enabled"] = not model["serverlessComputeNoPublicIP"]
    return [out]
