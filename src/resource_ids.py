"""
Resource IDs - Parsing and formatting of control-plane resource identifiers.

Every resource is addressed by a path of the form::

    /subscriptions/{sub}/resourceGroups/{rg}/providers/{namespace}/{type}/{name}

optionally followed by further ``{type}/{name}`` pairs for child resources.
"""

from typing import ClassVar, Tuple, Type, TypeVar

from errors import ResourceIdError

T = TypeVar("T", bound="ResourceId")


class ResourceId:
    """
    Base class for typed resource identities.

    Subclasses set ``provider`` (e.g. 'Microsoft.Relay') and ``types``, the
    ordered child resource type segments (e.g. ('namespaces',)). Instances
    are immutable and hashable.
    """

    display_name: ClassVar[str] = "Resource"
    provider: ClassVar[str] = ""
    types: ClassVar[Tuple[str, ...]] = ()

    __slots__ = ("_subscription_id", "_resource_group_name", "_names")

    def __init__(self, subscription_id: str, resource_group_name: str, *names: str):
        if len(names) != len(self.types):
            raise ResourceIdError(
                f"{self.display_name} ID needs {len(self.types)} name(s), "
                f"got {len(names)}"
            )
        object.__setattr__(self, "_subscription_id", subscription_id)
        object.__setattr__(self, "_resource_group_name", resource_group_name)
        object.__setattr__(self, "_names", tuple(names))

    def __setattr__(self, key, value):
        raise AttributeError(f"{type(self).__name__} is immutable")

    @property
    def subscription_id(self) -> str:
        return self._subscription_id

    @property
    def resource_group_name(self) -> str:
        return self._resource_group_name

    @property
    def names(self) -> Tuple[str, ...]:
        return self._names

    @property
    def name(self) -> str:
        """Name of the innermost resource."""
        return self._names[-1]

    def id(self) -> str:
        """Format as the canonical ID string."""
        parts = [
            "",
            "subscriptions",
            self._subscription_id,
            "resourceGroups",
            self._resource_group_name,
            "providers",
            self.provider,
        ]
        for segment, name in zip(self.types, self._names):
            parts.extend([segment, name])
        return "/".join(parts)

    @classmethod
    def expected_format(cls) -> str:
        tail = "/".join(f"{t}/{{{t}Name}}" for t in cls.types)
        return (
            "/subscriptions/{subscriptionId}/resourceGroups/{resourceGroupName}"
            f"/providers/{cls.provider}/{tail}"
        )

    @classmethod
    def parse(cls: Type[T], value: str, insensitive: bool = False) -> T:
        """
        Parse an ID string.

        Args:
            value: The ID string.
            insensitive: Match the fixed segments ignoring case. The parsed
                ID always formats back with canonical casing.

        Returns:
            The typed ID.

        Raises:
            ResourceIdError: If the string does not match the expected shape.
        """
        if not isinstance(value, str) or not value:
            raise ResourceIdError(
                f"parsing {value!r} as a {cls.display_name} ID: ID was empty"
            )

        parts = value.split("/")
        expected_len = 7 + 2 * len(cls.types)
        if len(parts) != expected_len or parts[0] != "":
            raise ResourceIdError(
                f"parsing {value!r} as a {cls.display_name} ID: "
                f"expected the format {cls.expected_format()!r}"
            )

        def same(actual: str, expected: str) -> bool:
            if insensitive:
                return actual.lower() == expected.lower()
            return actual == expected

        fixed = [(1, "subscriptions"), (3, "resourceGroups"), (5, "providers")]
        fixed.append((6, cls.provider))
        fixed.extend((7 + 2 * i, t) for i, t in enumerate(cls.types))

        for index, expected in fixed:
            if not same(parts[index], expected):
                raise ResourceIdError(
                    f"parsing {value!r} as a {cls.display_name} ID: "
                    f"expected segment {expected!r} but got {parts[index]!r}"
                )

        values = [parts[2], parts[4]] + [
            parts[8 + 2 * i] for i in range(len(cls.types))
        ]
        if any(v == "" for v in values):
            raise ResourceIdError(
                f"parsing {value!r} as a {cls.display_name} ID: "
                "segment values cannot be empty"
            )

        return cls(*values)

    def __eq__(self, other):
        if type(other) is not type(self):
            return NotImplemented
        return self.id() == other.id()

    def __hash__(self):
        return hash((type(self).__name__, self.id()))

    def __str__(self) -> str:
        return self.id()

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.id()!r})"


class NamespaceId(ResourceId):
    display_name = "Relay Namespace"
    provider = "Microsoft.Relay"
    types = ("namespaces",)

    @property
    def namespace_name(self) -> str:
        return self.names[0]


class AuthorizationRuleId(ResourceId):
    display_name = "Relay Namespace Authorization Rule"
    provider = "Microsoft.Relay"
    types = ("namespaces", "authorizationRules")

    @property
    def namespace_name(self) -> str:
        return self.names[0]

    @property
    def authorization_rule_name(self) -> str:
        return self.names[1]


class WorkspaceId(ResourceId):
    display_name = "Machine Learning Workspace"
    provider = "Microsoft.MachineLearningServices"
    types = ("workspaces",)

    @property
    def workspace_name(self) -> str:
        return self.names[0]


class KeyVaultId(ResourceId):
    display_name = "Key Vault"
    provider = "Microsoft.KeyVault"
    types = ("vaults",)


class StorageAccountId(ResourceId):
    display_name = "Storage Account"
    provider = "Microsoft.Storage"
    types = ("storageAccounts",)


class ComponentId(ResourceId):
    display_name = "Application Insights Component"
    provider = "Microsoft.Insights"
    types = ("components",)


class RegistryId(ResourceId):
    display_name = "Container Registry"
    provider = "Microsoft.ContainerRegistry"
    types = ("registries",)


class UserAssignedIdentityId(ResourceId):
    display_name = "User Assigned Identity"
    provider = "Microsoft.ManagedIdentity"
    types = ("userAssignedIdentities",)


class SubnetId(ResourceId):
    display_name = "Subnet"
    provider = "Microsoft.Network"
    types = ("virtualNetworks", "subnets")
