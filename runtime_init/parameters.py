"""
Runtime parameter resolution.

Resolves every declared runtime parameter, in declaration order, into a
read-only name -> value mapping used for template substitution:

- static    value used verbatim
- url       file:// or http(s):// location loaded through the resolver,
            optionally narrowed with a dotted `query` path
- secret    cloud client get_secret() for secretProvider.environment
- metadata  cloud client get_metadata() for metadataProvider.environment

Each resolution is retried under its policy. Secret values are never logged.
"""

import logging
from types import MappingProxyType
from typing import Any, Iterable, Mapping, Optional

import httpx

from runtime_init.cloud.registry import CloudClientRegistry
from runtime_init.config import RuntimeParameter
from runtime_init.errors import ApplicationError, PhaseError
from runtime_init.resolver import DEFAULT_REQUEST_TIMEOUT, HTTP_SCHEMES, get_scheme, load_data
from runtime_init.utils import RetryPolicy, retrier

logger = logging.getLogger(__name__)

PHASE_NAME = "runtime_parameters"


def query_path(value: Any, path: str) -> Any:
    """
    Walk a dotted path into parsed data.

    "a.b.0.c" resolves to value["a"]["b"][0]["c"].

    Raises:
        ValueError: If any part of the path is missing
    """
    result = value
    for part in path.split("."):
        if isinstance(result, Mapping) and part in result:
            result = result[part]
        elif isinstance(result, list) and part.isdigit() and int(part) < len(result):
            result = result[int(part)]
        else:
            raise ValueError(f"Query path not found: {path} (missing '{part}')")
    return result


async def resolve_parameter(
    parameter: RuntimeParameter,
    *,
    cloud_clients: Optional[CloudClientRegistry] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    timeout: float = DEFAULT_REQUEST_TIMEOUT,
) -> Any:
    """
    Resolve a single runtime parameter.

    Args:
        parameter: Parameter definition
        cloud_clients: Registry used for secret/metadata parameters
        transport: Optional httpx transport for url parameters
        timeout: Per-request timeout in seconds

    Returns:
        Resolved value

    Raises:
        ApplicationError: If a url parameter answers non-2xx
        UnknownCloudEnvironment: If no cloud client serves the environment
    """
    if parameter.type == "static":
        return parameter.value

    if parameter.type == "url":
        location = str(parameter.value)
        data = await load_data(
            location,
            {
                "location_type": "url",
                "headers": parameter.headers,
                "verify_tls": parameter.verify_tls,
                "timeout": timeout,
            },
            transport=transport,
        )
        if get_scheme(location) in HTTP_SCHEMES:
            if not 200 <= data["code"] < 300:
                raise ApplicationError(f"GET {location} was rejected", data["code"], data["body"])
            data = data["body"]
        if parameter.query:
            data = query_path(data, parameter.query)
        return data

    registry = cloud_clients or CloudClientRegistry()
    client = await registry.get(parameter.environment)
    return await load_data(
        f"{parameter.environment}://{parameter.name}",
        {"location_type": parameter.type, "provider": parameter.provider},
        cloud_client=client,
    )


async def resolve_runtime_parameters(
    parameters: Iterable[RuntimeParameter],
    *,
    policy: Optional[RetryPolicy] = None,
    cloud_clients: Optional[CloudClientRegistry] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    timeout: float = DEFAULT_REQUEST_TIMEOUT,
) -> Mapping[str, Any]:
    """
    Resolve parameters in declaration order.

    Args:
        parameters: Parameter definitions
        policy: Default retry policy (per-parameter overrides apply)
        cloud_clients: Registry used for secret/metadata parameters
        transport: Optional httpx transport
        timeout: Per-request timeout in seconds

    Returns:
        Read-only mapping of name -> value, in declaration order

    Raises:
        PhaseError: Naming the first parameter that could not be resolved
    """
    policy = policy or RetryPolicy()
    resolved: dict[str, Any] = {}

    for parameter in parameters:
        parameter_policy = policy.override(parameter.max_retries, parameter.retry_interval)
        try:
            resolved[parameter.name] = await retrier(
                resolve_parameter,
                parameter,
                cloud_clients=cloud_clients,
                transport=transport,
                timeout=timeout,
                policy=parameter_policy,
                logger=logger,
            )
        except Exception as e:
            raise PhaseError(PHASE_NAME, parameter.name, e) from e

        logger.info(
            f"Resolved runtime parameter {parameter.name} ({parameter.type})",
            extra={"stage": PHASE_NAME, "event": "parameter_resolved"},
        )

    return MappingProxyType(resolved)
