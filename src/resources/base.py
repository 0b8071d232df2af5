"""
Resource Provider Base - Abstract interface for resource providers.

A resource provider owns one resource type: its configuration schema, the
mapping between flat configuration and the API document (expand/flatten),
and the create/read/update/delete/import lifecycle. The lifecycle itself is
delegated to a LifecycleReconciler built from the ProviderContext.
"""

import asyncio
import copy
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from arm_client import ArmClient, ResourceApi
from config import MIN_DELETE_POLL_INTERVAL, Config, FeaturesConfig
from errors import (
    ConfigurationError,
    OperationTimeoutError,
    ProviderError,
    RequestError,
    ResourceExistsError,
)
from reconciler import Clock, DeleteConfirmation, LifecycleReconciler, SystemClock
from resource_ids import ResourceId
from validation import validate_config_against_schema

logger = logging.getLogger(__name__)

MINUTE = 60


@dataclass
class ResourceTimeouts:
    """Per-operation timeouts in seconds."""

    create: int = 30 * MINUTE
    read: int = 5 * MINUTE
    update: int = 30 * MINUTE
    delete: int = 30 * MINUTE

    def merged(self, overrides: Optional[Dict[str, Any]]) -> "ResourceTimeouts":
        """Return a copy with any of create/read/update/delete overridden."""
        values = {
            "create": self.create,
            "read": self.read,
            "update": self.update,
            "delete": self.delete,
        }
        for key, value in (overrides or {}).items():
            if key not in values:
                raise ConfigurationError(f"timeouts: unknown operation {key!r}")
            values[key] = int(value)
        return ResourceTimeouts(**values)


@dataclass
class ResourceData:
    """
    One resource instance as seen by a provider.

    ``attributes`` holds the desired configuration on the way in and the
    observed state after a read; ``prior`` holds the previous state during
    an update.
    """

    id: Optional[str] = None
    attributes: Dict[str, Any] = field(default_factory=dict)
    prior: Optional[Dict[str, Any]] = None
    timeouts: Optional[Dict[str, Any]] = None

    def get(self, key: str, default: Any = None) -> Any:
        value = self.attributes.get(key)
        return default if value is None else value

    def set(self, key: str, value: Any) -> None:
        self.attributes[key] = value

    def get_change(self, key: str, default: Any = None) -> Tuple[Any, Any]:
        """Return (old, new) for an attribute."""
        old = (self.prior or {}).get(key)
        return (default if old is None else old, self.get(key, default))

    @property
    def is_new(self) -> bool:
        return self.id is None


class ChangeAction(Enum):
    """What applying a configuration to existing state would do."""

    CREATE = "create"
    UPDATE = "update"
    REPLACE = "replace"
    NO_OP = "no-op"


@dataclass
class ResourcePlan:
    """Result of comparing configuration with prior state."""

    action: ChangeAction
    changed: List[str] = field(default_factory=list)
    replace_reasons: List[str] = field(default_factory=list)


@dataclass
class ProviderContext:
    """
    Collaborators handed to every provider call.

    Providers never look these up from global state.
    """

    client: ArmClient
    subscription_id: str
    features: FeaturesConfig = field(default_factory=FeaturesConfig)
    clock: Clock = field(default_factory=SystemClock)
    delete_poll_interval: float = MIN_DELETE_POLL_INTERVAL
    operation_poll_interval: float = 10

    @classmethod
    def from_config(cls, config: Config) -> "ProviderContext":
        """Build a context from loaded configuration."""
        return cls(
            client=ArmClient(
                endpoint=config.arm.endpoint,
                access_token=config.arm.access_token,
                request_timeout=config.arm.request_timeout,
            ),
            subscription_id=config.arm.subscription_id,
            features=config.features,
            delete_poll_interval=config.polling.delete_poll_interval,
            operation_poll_interval=config.polling.operation_poll_interval,
        )

    def reconciler_for(
        self,
        api: ResourceApi,
        delete_confirmation: DeleteConfirmation = DeleteConfirmation.EXISTENCE_PROBE,
    ) -> LifecycleReconciler:
        """Build a reconciler for one resource API."""
        return LifecycleReconciler(
            api=api,
            clock=self.clock,
            delete_poll_interval=self.delete_poll_interval,
            operation_poll_interval=self.operation_poll_interval,
            delete_confirmation=delete_confirmation,
        )


def normalize_location(location: Optional[str]) -> Optional[str]:
    """Normalise a location name, e.g. 'West Europe' -> 'westeurope'."""
    if location is None:
        return None
    return location.replace(" ", "").lower()


def expand_tags(tags: Optional[Dict[str, Any]]) -> Dict[str, str]:
    return {str(k): str(v) for k, v in (tags or {}).items()}


def flatten_tags(tags: Optional[Dict[str, Any]]) -> Dict[str, str]:
    return dict(tags or {})


class ResourceProvider(ABC):
    """
    Abstract base class for resource providers.

    Subclasses declare the schema and the expand/flatten mapping. The
    create/read/update/delete flow is shared and runs through a
    LifecycleReconciler.
    """

    # Attributes whose change requires replacing the resource
    force_new: List[str] = []
    # Attributes compared ignoring case when planning
    case_insensitive: List[str] = []
    # Attributes never shown in plain output
    sensitive: List[str] = []
    # Attributes computed by the service, never part of configuration
    computed: List[str] = []

    timeouts: ResourceTimeouts = ResourceTimeouts()
    delete_confirmation: DeleteConfirmation = DeleteConfirmation.EXISTENCE_PROBE

    @property
    @abstractmethod
    def type_name(self) -> str:
        """Unique resource type name (e.g. 'azurerm_relay_namespace')."""
        pass

    @property
    @abstractmethod
    def schema(self) -> Dict[str, Any]:
        """Draft 7 JSON Schema of the configuration."""
        pass

    @abstractmethod
    def parse_id(self, value: str) -> ResourceId:
        """Parse an ID string for this resource type."""
        pass

    @abstractmethod
    def build_id(self, data: ResourceData, ctx: ProviderContext) -> ResourceId:
        """Build the ID of a new resource from its configuration."""
        pass

    @abstractmethod
    def api(self, ctx: ProviderContext) -> ResourceApi:
        """Return the API binding for this resource type."""
        pass

    @abstractmethod
    def expand(self, data: ResourceData, ctx: ProviderContext) -> Dict[str, Any]:
        """
        Build the API request document from configuration.

        Raises:
            ConfigurationError: For cross-field rules the schema cannot express.
        """
        pass

    @abstractmethod
    async def flatten(
        self, resource_id: ResourceId, model: Dict[str, Any], ctx: ProviderContext
    ) -> Dict[str, Any]:
        """Build flat state attributes from the API response document."""
        pass

    # Configuration handling

    def with_defaults(self, config: Dict[str, Any]) -> Dict[str, Any]:
        """Fill top-level schema defaults for attributes not set."""
        result = copy.deepcopy(config)
        for key, prop in self.schema.get("properties", {}).items():
            if result.get(key) is None and "default" in prop:
                result[key] = copy.deepcopy(prop["default"])
        return result

    def validate(self, config: Dict[str, Any]) -> None:
        """
        Validate configuration against the schema.

        Raises:
            ConfigurationError: Listing every violation.
        """
        is_valid, error = validate_config_against_schema(config, self.schema)
        if not is_valid:
            raise ConfigurationError(f"invalid {self.type_name} configuration: {error}")

    def plan(
        self, prior: Optional[Dict[str, Any]], config: Dict[str, Any]
    ) -> ResourcePlan:
        """
        Classify the change needed to move from prior state to config.

        Only attributes present in the configuration are compared.
        """
        if prior is None:
            return ResourcePlan(action=ChangeAction.CREATE)

        config = self.with_defaults(config)
        changed = []
        for key, desired in config.items():
            if key in self.computed:
                continue
            if not self._same(key, prior.get(key), desired):
                changed.append(key)

        replace_reasons = [key for key in changed if key in self.force_new]
        if replace_reasons:
            action = ChangeAction.REPLACE
        elif changed:
            action = ChangeAction.UPDATE
        else:
            action = ChangeAction.NO_OP
        return ResourcePlan(
            action=action, changed=changed, replace_reasons=replace_reasons
        )

    def _same(self, key: str, current: Any, desired: Any) -> bool:
        if key in self.case_insensitive and isinstance(current, str):
            return isinstance(desired, str) and current.lower() == desired.lower()
        if key == "location":
            return normalize_location(current) == normalize_location(desired)
        if current in (None, "", [], {}) and desired in (None, "", [], {}):
            return True
        if isinstance(desired, list) and isinstance(current, list):
            return self._same_list(key, current, desired)
        return current == desired

    def _same_list(self, key: str, current: List[Any], desired: List[Any]) -> bool:
        if len(current) != len(desired):
            return False
        if all(isinstance(v, str) for v in current + desired):
            # String lists are sets of IDs in every schema here
            return sorted(v.lower() for v in current) == sorted(
                v.lower() for v in desired
            )
        for have, want in zip(current, desired):
            if isinstance(want, dict) and isinstance(have, dict):
                # Nested blocks: attributes not configured are not compared
                if not all(self._same(k, have.get(k), v) for k, v in want.items()):
                    return False
            elif have != want:
                return False
        return True

    def reconciler(self, ctx: ProviderContext) -> LifecycleReconciler:
        return ctx.reconciler_for(self.api(ctx), self.delete_confirmation)

    def effective_timeouts(self, data: ResourceData) -> ResourceTimeouts:
        return self.timeouts.merged(data.timeouts)

    # Lifecycle

    async def create(self, data: ResourceData, ctx: ProviderContext) -> ResourceData:
        """
        Create a new resource.

        Raises:
            ResourceExistsError: If the resource already exists.
            ProviderError: If the request fails or times out.
        """
        data.attributes = self.with_defaults(data.attributes)
        self.validate(data.attributes)
        resource_id = self.build_id(data, ctx)
        reconciler = self.reconciler(ctx)

        try:
            existing = await reconciler.fetch(resource_id)
        except RequestError as e:
            raise e.with_context(
                f"checking for presence of existing {resource_id}"
            ) from e
        if existing is not None:
            raise ResourceExistsError(self.type_name, resource_id.id())

        return await self._apply(
            resource_id, data, ctx, self.effective_timeouts(data).create
        )

    async def update(self, data: ResourceData, ctx: ProviderContext) -> ResourceData:
        """Update an existing resource in place."""
        data.attributes = self.with_defaults(data.attributes)
        self.validate(data.attributes)
        resource_id = self.parse_id(data.id)
        return await self._apply(
            resource_id, data, ctx, self.effective_timeouts(data).update
        )

    async def _apply(
        self,
        resource_id: ResourceId,
        data: ResourceData,
        ctx: ProviderContext,
        timeout: int,
    ) -> ResourceData:
        body = self.expand(data, ctx)
        outcome = await self.reconciler(ctx).apply(resource_id, body, timeout)
        outcome.raise_for_status()

        data.id = resource_id.id()
        state = await self.read(data, ctx)
        if state is None:
            raise ProviderError(f"{resource_id} was not found after creation/update")
        return state

    async def read(
        self, data: ResourceData, ctx: ProviderContext
    ) -> Optional[ResourceData]:
        """
        Read the current state of a resource.

        Returns:
            ResourceData with observed attributes, or None if the resource
            no longer exists.
        """
        resource_id = self.parse_id(data.id)
        timeout = self.effective_timeouts(data).read

        try:
            model = await asyncio.wait_for(
                self.reconciler(ctx).fetch(resource_id), timeout
            )
            if model is None:
                logger.info(f"{resource_id} was not found - removing from state")
                return None
            attributes = await asyncio.wait_for(
                self.flatten(resource_id, model, ctx), timeout
            )
        except asyncio.TimeoutError as e:
            raise OperationTimeoutError(
                f"retrieving {resource_id}: timed out after {timeout}s"
            ) from e

        return ResourceData(
            id=resource_id.id(), attributes=attributes, timeouts=data.timeouts
        )

    async def delete(self, data: ResourceData, ctx: ProviderContext) -> None:
        """Delete a resource and wait until it is gone."""
        resource_id = self.parse_id(data.id)
        outcome = await self.reconciler(ctx).delete(
            resource_id, self.effective_timeouts(data).delete
        )
        outcome.raise_for_status()

    async def import_state(
        self, resource_id: str, ctx: ProviderContext
    ) -> ResourceData:
        """
        Import an existing resource by ID.

        Raises:
            ResourceIdError: If the ID is not valid for this resource type.
            ProviderError: If the resource does not exist.
        """
        parsed = self.parse_id(resource_id)
        state = await self.read(ResourceData(id=parsed.id()), ctx)
        if state is None:
            raise ProviderError(
                f"cannot import non-existent remote object {parsed.id()!r}"
            )
        return state
