"""
ARM Client - HTTP client for the resource-manager control plane.

Wraps aiohttp for GET/PUT/DELETE/POST against resource IDs, parses the
control plane's error envelope into RequestError, and models the
asynchronous-operation protocol (Azure-AsyncOperation / Location headers
and provisioningState) as a pollable LongRunningOperation handle.
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

import aiohttp

from errors import RequestError
from resource_ids import ResourceId

logger = logging.getLogger(__name__)


class OperationStatus(Enum):
    """Status reported by one poll of a long-running operation."""

    IN_PROGRESS = "InProgress"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"
    CANCELED = "Canceled"

    @classmethod
    def from_state(cls, state: Optional[str]) -> "OperationStatus":
        """Map a control-plane status string onto an OperationStatus."""
        if state is None:
            return cls.SUCCEEDED
        normalized = state.strip().lower()
        if normalized == "succeeded":
            return cls.SUCCEEDED
        if normalized == "failed":
            return cls.FAILED
        if normalized in ("canceled", "cancelled"):
            return cls.CANCELED
        return cls.IN_PROGRESS

    @property
    def is_terminal(self) -> bool:
        return self is not OperationStatus.IN_PROGRESS


@dataclass
class ArmResponse:
    """A successful control-plane response."""

    status: int
    headers: Dict[str, str] = field(default_factory=dict)
    body: Optional[Dict[str, Any]] = None

    def header(self, name: str) -> Optional[str]:
        return self.headers.get(name.lower())


@dataclass
class PollResult:
    """Result of one poll of a long-running operation."""

    status: OperationStatus
    model: Optional[Dict[str, Any]] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None


def _provisioning_state(body: Optional[Dict[str, Any]]) -> Optional[str]:
    if not isinstance(body, dict):
        return None
    properties = body.get("properties")
    if not isinstance(properties, dict):
        return None
    return properties.get("provisioningState")


def _error_detail(body: Any) -> Dict[str, Optional[str]]:
    """Extract code/message from the {'error': {...}} envelope."""
    if isinstance(body, dict):
        error = body.get("error", body)
        if isinstance(error, dict):
            return {"code": error.get("code"), "message": error.get("message")}
    return {"code": None, "message": None}


class ArmClient:
    """
    Minimal asynchronous control-plane client.

    Each request opens its own aiohttp session. Authentication is an opaque
    bearer token supplied by configuration.
    """

    def __init__(
        self,
        endpoint: str = "https://management.azure.com",
        access_token: str = "",
        request_timeout: int = 60,
    ):
        self.endpoint = endpoint.rstrip("/")
        self.access_token = access_token
        self.request_timeout = request_timeout

        if not self.access_token:
            logger.warning(
                "ARM access token not configured. Set ARM_ACCESS_TOKEN "
                "environment variable."
            )

    def _get_headers(self) -> Dict[str, str]:
        """Get HTTP headers for control-plane requests."""
        headers = {"Accept": "application/json"}
        if self.access_token:
            headers["Authorization"] = f"Bearer {self.access_token}"
        return headers

    def url_for(self, path: str) -> str:
        """Resolve a resource path or absolute polling URL."""
        if path.startswith("http://") or path.startswith("https://"):
            return path
        return f"{self.endpoint}{path}"

    async def request(
        self,
        method: str,
        path: str,
        api_version: Optional[str] = None,
        body: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, str]] = None,
    ) -> ArmResponse:
        """
        Send one request.

        Args:
            method: HTTP method.
            path: Resource ID path or absolute URL.
            api_version: Value for the api-version query parameter.
            body: JSON request body.
            params: Extra query parameters.

        Returns:
            ArmResponse for any 2xx status.

        Raises:
            RequestError: For non-2xx responses and transport failures.
        """
        url = self.url_for(path)
        query: Dict[str, str] = dict(params or {})
        if api_version:
            query["api-version"] = api_version

        timeout = aiohttp.ClientTimeout(total=self.request_timeout)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.request(
                    method,
                    url,
                    headers=self._get_headers(),
                    params=query,
                    json=body,
                ) as response:
                    text = await response.text()
                    headers = {k.lower(): v for k, v in response.headers.items()}
                    status = response.status
        except asyncio.TimeoutError as e:
            raise RequestError(
                f"sending {method} {url}: timed out after {self.request_timeout}s"
            ) from e
        except (aiohttp.ClientError, UnicodeDecodeError) as e:
            raise RequestError(f"sending {method} {url}: {e}") from e

        parsed: Any = None
        if text:
            try:
                parsed = json.loads(text)
            except ValueError:
                parsed = None

        if status >= 400:
            detail = _error_detail(parsed)
            message = detail["message"] or text or "no response body"
            code = detail["code"]
            prefix = f"unexpected status {status}"
            if code:
                prefix = f"{prefix} with error: {code}"
            logger.debug(f"{method} {url} failed with {status}: {message}")
            raise RequestError(f"{prefix}: {message}", status=status, code=code)

        logger.debug(f"{method} {url} -> {status}")
        return ArmResponse(
            status=status,
            headers=headers,
            body=parsed if isinstance(parsed, dict) else None,
        )


class LongRunningOperation:
    """
    Pollable handle for a PUT or DELETE that may complete asynchronously.

    The operation is tracked through, in order of preference, the
    Azure-AsyncOperation header, the Location header, or the resource's
    own properties.provisioningState.
    """

    def __init__(
        self,
        client: ArmClient,
        response: ArmResponse,
        resource_path: str,
        api_version: str,
        method: str,
    ):
        self.client = client
        self.resource_path = resource_path
        self.api_version = api_version
        self.method = method.upper()
        self.retry_after = self._parse_retry_after(response)
        self.result: Optional[PollResult] = None

        self._async_url = response.header("Azure-AsyncOperation")
        self._location_url = response.header("Location")

        if self._async_url or self._location_url:
            return

        state = _provisioning_state(response.body)
        status = OperationStatus.from_state(state)
        if not status.is_terminal:
            if self.method == "PUT":
                return
            # A DELETE without tracking headers is accepted as complete
            status = OperationStatus.SUCCEEDED

        self.result = self._result_for(status, response.body)

    @property
    def done(self) -> bool:
        return self.result is not None

    @staticmethod
    def _parse_retry_after(response: ArmResponse) -> Optional[int]:
        value = response.header("Retry-After")
        if value is None:
            return None
        try:
            return max(int(value), 0)
        except ValueError:
            return None

    def _result_for(
        self, status: OperationStatus, body: Optional[Dict[str, Any]]
    ) -> PollResult:
        detail = _error_detail(body) if status.is_terminal else {}
        if status is OperationStatus.SUCCEEDED:
            return PollResult(status=status, model=body)
        if status.is_terminal:
            return PollResult(
                status=status,
                error_code=detail.get("code"),
                error_message=detail.get("message"),
            )
        return PollResult(status=status)

    async def poll(self) -> PollResult:
        """
        Query the operation status once.

        Returns:
            PollResult for this poll. Once terminal, the result is also kept
            on ``self.result``.

        Raises:
            RequestError: If the status query itself fails.
        """
        if self.result is not None:
            return self.result

        if self._async_url:
            result = await self._poll_async_operation()
        elif self._location_url:
            result = await self._poll_location()
        else:
            result = await self._poll_provisioning_state()

        if result.status.is_terminal:
            self.result = result
        return result

    async def _poll_async_operation(self) -> PollResult:
        response = await self.client.request("GET", self._async_url)
        self.retry_after = self._parse_retry_after(response) or self.retry_after
        body = response.body or {}
        status = OperationStatus.from_state(body.get("status", "InProgress"))
        if status is OperationStatus.SUCCEEDED:
            return PollResult(status=status, model=await self._final_model())
        return self._result_for(status, body)

    async def _poll_location(self) -> PollResult:
        response = await self.client.request("GET", self._location_url)
        self.retry_after = self._parse_retry_after(response) or self.retry_after
        if response.status == 202:
            return PollResult(status=OperationStatus.IN_PROGRESS)
        model = response.body
        if self.method == "PUT" and model is None:
            model = await self._final_model()
        return PollResult(status=OperationStatus.SUCCEEDED, model=model)

    async def _poll_provisioning_state(self) -> PollResult:
        response = await self.client.request(
            "GET", self.resource_path, api_version=self.api_version
        )
        status = OperationStatus.from_state(_provisioning_state(response.body))
        return self._result_for(status, response.body)

    async def _final_model(self) -> Optional[Dict[str, Any]]:
        if self.method != "PUT":
            return None
        response = await self.client.request(
            "GET", self.resource_path, api_version=self.api_version
        )
        return response.body


class ResourceApi:
    """
    Binding of the client to one resource type and API version.

    This is the collaborator the LifecycleReconciler drives.
    """

    def __init__(self, client: ArmClient, api_version: str):
        self.client = client
        self.api_version = api_version

    async def get(self, resource_id: ResourceId) -> Dict[str, Any]:
        """Read a resource. Raises RequestError (status 404 when absent)."""
        response = await self.client.request(
            "GET", resource_id.id(), api_version=self.api_version
        )
        return response.body or {}

    async def create_or_update(
        self, resource_id: ResourceId, body: Dict[str, Any]
    ) -> LongRunningOperation:
        """Send a PUT and return its operation handle."""
        response = await self.client.request(
            "PUT", resource_id.id(), api_version=self.api_version, body=body
        )
        return LongRunningOperation(
            self.client, response, resource_id.id(), self.api_version, "PUT"
        )

    async def delete(self, resource_id: ResourceId) -> LongRunningOperation:
        """Send a DELETE and return its operation handle."""
        response = await self.client.request(
            "DELETE",
            resource_id.id(),
            api_version=self.api_version,
            params=self.delete_params(),
        )
        return LongRunningOperation(
            self.client, response, resource_id.id(), self.api_version, "DELETE"
        )

    def delete_params(self) -> Dict[str, str]:
        """Extra query parameters for DELETE. Override per resource type."""
        return {}

    async def post(
        self,
        resource_id: ResourceId,
        action: str,
        body: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Invoke a POST action (e.g. listKeys) on a resource."""
        response = await self.client.request(
            "POST",
            f"{resource_id.id()}/{action}",
            api_version=self.api_version,
            body=body,
        )
        return response.body or {}
