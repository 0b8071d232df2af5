"""Pytest configuration and fixtures."""

import pytest

import config
from arm_client import ArmResponse
from config import FeaturesConfig
from errors import RequestError
from reconciler import Clock
from resource_ids import NamespaceId, WorkspaceId
from resources.base import ProviderContext
from resources.registry import reset_registry

SUBSCRIPTION_ID = "00000000-0000-0000-0000-000000000000"


class FakeClock(Clock):
    """Clock whose sleep advances time instantly and records each call."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.start = start
        self.sleeps = []

    def monotonic(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds

    @property
    def elapsed(self) -> float:
        return self.now - self.start


class FakeArm:
    """
    In-memory control plane with the ArmClient.request interface.

    PUT stores the body and completes synchronously. DELETE removes the
    resource, which keeps answering GETs for ``delete_lag`` further reads.
    ``errors`` maps (method, path) to an error raised for that request.
    """

    def __init__(self):
        self.resources = {}
        self.lingering = {}
        self.delete_lag = 0
        self.errors = {}
        self.calls = []
        self.keys = {
            "primaryConnectionString": "Endpoint=sb://primary",
            "secondaryConnectionString": "Endpoint=sb://secondary",
            "primaryKey": "primary-key",
            "secondaryKey": "secondary-key",
        }

    def calls_for(self, method):
        return [c for c in self.calls if c[0] == method]

    async def request(self, method, path, api_version=None, body=None, params=None):
        self.calls.append((method, path, params, body))
        error = self.errors.get((method, path))
        if error is not None:
            raise error

        if method == "PUT":
            model = dict(body)
            model["id"] = path
            model["properties"] = dict(
                model.get("properties") or {}, provisioningState="Succeeded"
            )
            self.resources[path] = model
            return ArmResponse(status=200, body=model)

        if method == "GET":
            if path in self.resources:
                return ArmResponse(status=200, body=self.resources[path])
            model, remaining = self.lingering.get(path, (None, 0))
            if remaining > 0:
                self.lingering[path] = (model, remaining - 1)
                return ArmResponse(status=200, body=model)
            raise RequestError(
                "unexpected status 404 with error: ResourceNotFound: not found",
                status=404,
                code="ResourceNotFound",
            )

        if method == "DELETE":
            model = self.resources.pop(path, None)
            if model is None:
                return ArmResponse(status=204)
            self.lingering[path] = (model, self.delete_lag)
            return ArmResponse(status=200)

        if method == "POST" and path.endswith("/listKeys"):
            return ArmResponse(status=200, body=dict(self.keys))

        raise RequestError(f"unexpected status 405: {method} {path}", status=405)


@pytest.fixture(autouse=True)
def clean_globals():
    """Reset the config and registry singletons around every test."""
    config.reset_config()
    reset_registry()
    yield
    config.reset_config()
    reset_registry()


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def fake_arm():
    return FakeArm()


@pytest.fixture
def provider_ctx(fake_arm, fake_clock):
    return ProviderContext(
        client=fake_arm,
        subscription_id=SUBSCRIPTION_ID,
        features=FeaturesConfig(),
        clock=fake_clock,
    )


@pytest.fixture
def namespace_id():
    return NamespaceId(SUBSCRIPTION_ID, "example-resources", "example-relay")


@pytest.fixture
def workspace_id():
    return WorkspaceId(SUBSCRIPTION_ID, "example-resources", "example-mlw")


def arm_id(provider: str, *segments: str) -> str:
    """Build an ID under the test subscription and resource group."""
    tail = "/".join(segments)
    return (
        f"/subscriptions/{SUBSCRIPTION_ID}/resourceGroups/example-resources"
        f"/providers/{provider}/{tail}"
    )


@pytest.fixture
def workspace_config():
    """Minimal valid machine learning workspace configuration."""
    return {
        "name": "example-mlw",
        "location": "West Europe",
        "resource_group_name": "example-resources",
        "application_insights_id": arm_id(
            "Microsoft.Insights", "components", "example-ai"
        ),
        "key_vault_id": arm_id("Microsoft.KeyVault", "vaults", "example-kv"),
        "storage_account_id": arm_id(
            "Microsoft.Storage", "storageAccounts", "examplesa"
        ),
        "identity": [{"type": "SystemAssigned"}],
    }


@pytest.fixture
def namespace_config():
    """Minimal valid relay namespace configuration."""
    return {
        "name": "example-relay",
        "location": "West Europe",
        "resource_group_name": "example-resources",
        "sku_name": "Standard",
        "tags": {"source": "tests"},
    }
