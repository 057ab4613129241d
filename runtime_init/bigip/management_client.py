"""
BIG-IP management API client.

Owns one authenticated HTTP session to the device's REST management API for
the lifetime of an onboarding run, and the readiness check that gates
configuration.

Readiness state machine:

    POLLING --(every entry reports "yes")--> READY
    POLLING --(poll budget spent)----------> EXHAUSTED

Every poll that does not report ready consumes one attempt of the retry
policy, so max_retries x retry_interval must cover the device's worst-case
boot time.
"""

import logging
from enum import Enum
from typing import Any, Optional

import httpx

from runtime_init.errors import (
    ApplicationError,
    ReadyCheckFailed,
    RetryExhausted,
    RuntimeInitError,
    TransportError,
)
from runtime_init.utils import RetryPolicy, retrier

logger = logging.getLogger(__name__)

DEFAULT_HOST = "localhost"
DEFAULT_PORT = 8100
DEFAULT_PROTOCOL = "http"
DEFAULT_USER = "admin"
DEFAULT_PASSWORD = "admin"
DEFAULT_READY_MAX_RETRIES = 120
DEFAULT_READY_RETRY_INTERVAL = 5000  # milliseconds
DEFAULT_TIMEOUT = 30.0  # seconds

READY_ENDPOINT = "/mgmt/tm/sys/ready"
READY_TOKEN = "yes"


class ReadinessState(str, Enum):
    """State of the readiness check."""
    POLLING = "polling"
    READY = "ready"
    EXHAUSTED = "exhausted"


class DeviceNotReady(RuntimeInitError):
    """A single readiness poll did not report ready."""
    pass


def parse_ready_response(body: Any) -> dict[str, str]:
    """
    Extract readiness descriptions from a /mgmt/tm/sys/ready document.

    Shape:
        {"entries": {"<selfLink>": {"nestedStats": {"entries": {
            "system": {"description": "yes"}, ...}}}}}

    Args:
        body: Parsed JSON body

    Returns:
        Mapping of entry name (system, configReady, ...) to description

    Raises:
        DeviceNotReady: If the document does not have the expected shape
    """
    try:
        stats = next(iter(body["entries"].values()))
        entries = stats["nestedStats"]["entries"]
        descriptions = {name: str(value["description"]) for name, value in entries.items()}
    except (KeyError, TypeError, AttributeError, StopIteration) as e:
        raise DeviceNotReady(f"Unexpected ready check response: {body!r}") from e

    if not descriptions:
        raise DeviceNotReady(f"Ready check response has no entries: {body!r}")
    return descriptions


class ManagementClient:
    """
    Client for the device REST management API.

    Usage:
        async with ManagementClient(port=8100, max_retries=120) as client:
            await client.is_ready()
            response = await client.request("POST", "/mgmt/shared/appsvcs/declare", body)
    """

    def __init__(
        self,
        host: str = DEFAULT_HOST,
        port: int = DEFAULT_PORT,
        user: str = DEFAULT_USER,
        password: str = DEFAULT_PASSWORD,
        protocol: str = DEFAULT_PROTOCOL,
        verify_tls: bool = True,
        max_retries: int = DEFAULT_READY_MAX_RETRIES,
        retry_interval: int = DEFAULT_READY_RETRY_INTERVAL,
        timeout: float = DEFAULT_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the client.

        Args:
            host: Management address
            port: Management port
            user: Username for basic auth
            password: Password for basic auth
            protocol: "http" or "https"
            verify_tls: Verify server certificates (https only)
            max_retries: Readiness polls before giving up
            retry_interval: Delay between readiness polls in milliseconds
            timeout: Per-request timeout in seconds
            transport: Optional httpx transport (tests inject a MockTransport)
        """
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.protocol = protocol
        self.verify_tls = verify_tls
        self.max_retries = max_retries
        self.retry_interval = retry_interval
        self.timeout = timeout
        self.ready_state: Optional[ReadinessState] = None
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def base_url(self) -> str:
        return f"{self.protocol}://{self.host}:{self.port}"

    @property
    def ready_policy(self) -> RetryPolicy:
        return RetryPolicy(max_retries=self.max_retries, retry_interval=self.retry_interval)

    def _session(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                auth=(self.user, self.password),
                verify=self.verify_tls,
                timeout=httpx.Timeout(self.timeout),
                transport=self._transport,
            )
        return self._client

    async def aclose(self) -> None:
        """Close the HTTP session."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "ManagementClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def request(
        self,
        method: str,
        path: str,
        body: Any = None,
        headers: Optional[dict[str, str]] = None,
    ) -> dict[str, Any]:
        """
        Issue an authenticated call to the management API.

        Args:
            method: HTTP method
            path: Path under the base URL, e.g. /mgmt/shared/appsvcs/declare
            body: JSON-serializable payload
            headers: Extra headers

        Returns:
            {"code": status_code, "body": parsed_body}

        Raises:
            TransportError: Connection, TLS or timeout failure
            ApplicationError: Non-2xx response
        """
        kwargs: dict[str, Any] = {"headers": headers or {}}
        if body is not None:
            kwargs["json"] = body

        try:
            response = await self._session().request(method, path, **kwargs)
        except httpx.HTTPError as e:
            raise TransportError(
                f"{method} {self.base_url}{path} failed: {type(e).__name__}: {e}"
            ) from e

        try:
            parsed = response.json()
        except ValueError:
            parsed = response.text

        logger.debug(f"{method} {path} -> {response.status_code}")
        if not response.is_success:
            raise ApplicationError(f"{method} {path} was rejected", response.status_code, parsed)

        return {"code": response.status_code, "body": parsed}

    async def _ready_check(self) -> bool:
        response = await self.request("GET", READY_ENDPOINT)
        descriptions = parse_ready_response(response["body"])
        pending = sorted(name for name, value in descriptions.items() if value != READY_TOKEN)
        if pending:
            raise DeviceNotReady(f"Device not ready: {', '.join(pending)}")
        return True

    async def is_ready(self) -> bool:
        """
        Poll the readiness endpoint until the device reports ready.

        Returns:
            True once every readiness entry reports "yes"

        Raises:
            ReadyCheckFailed: If the poll budget is spent first
        """
        self.ready_state = ReadinessState.POLLING
        logger.info(
            f"Waiting for {self.base_url} to become ready "
            f"(max_retries={self.max_retries}, retry_interval={self.retry_interval}ms)"
        )
        try:
            await retrier(self._ready_check, policy=self.ready_policy, logger=logger)
        except RetryExhausted as e:
            self.ready_state = ReadinessState.EXHAUSTED
            raise ReadyCheckFailed(
                f"Ready check failed after {e.attempts} attempt(s): {e.last_error}"
            ) from e

        self.ready_state = ReadinessState.READY
        logger.info(f"{self.base_url} is ready")
        return True

    def __repr__(self) -> str:
        return f"ManagementClient(base_url={self.base_url}, user={self.user})"
