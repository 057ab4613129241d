"""
Data resolution by URI.

load_data() fetches content wherever it lives and returns it parsed:

- file://         local file; JSON is parsed, a single token is returned bare,
                  anything else comes back as text
- http(s)://      GET request; returns {"code": ..., "body": ...} with a JSON
                  body parsed when the response says it is JSON
- anything else   handed to a cloud client (get_secret / get_metadata) when
                  the caller declares a secret or metadata location type

download_to_file() streams a URL to disk without holding it in memory.
"""

import asyncio
import json
import logging
import os
import shutil
from pathlib import Path
from typing import Any, Mapping, Optional, Union
from urllib.parse import urlsplit

import httpx

from runtime_init.errors import ApplicationError, ConfigError, TransportError, UnknownLocationType
from runtime_init.utils import verify_directory

logger = logging.getLogger(__name__)

DEFAULT_REQUEST_TIMEOUT = 30.0  # seconds

HTTP_SCHEMES = ("http", "https")
CLOUD_LOCATION_TYPES = ("secret", "metadata")


def get_scheme(location: str) -> str:
    """Return the lowercased URI scheme ('' when there is none)."""
    return urlsplit(location).scheme.lower()


def _file_path(location: str) -> Path:
    """
    Map a file:// URI to a local absolute path (file:////a/b == /a/b).

    Only absolute paths are supported; file://relative/x names a host, not a
    path, and is rejected.
    """
    parts = urlsplit(location)
    if parts.netloc not in ("", "localhost"):
        raise ConfigError(f"file:// location must be an absolute path: {location}")
    rest = location.split("://", 1)[1]
    if parts.netloc:
        rest = rest[len(parts.netloc):]
    return Path("/" + rest.lstrip("/"))


def _parse_text(text: str) -> Any:
    stripped = text.strip()
    try:
        return json.loads(stripped)
    except ValueError:
        pass
    if stripped and not any(c.isspace() for c in stripped):
        return stripped
    return text


def _parse_response_body(response: httpx.Response) -> Any:
    content_type = response.headers.get("content-type", "")
    if "json" in content_type:
        try:
            return response.json()
        except ValueError:
            return response.text
    return response.text


def _make_client(
    verify_tls: bool,
    timeout: float,
    transport: Optional[httpx.AsyncBaseTransport],
) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        verify=verify_tls,
        timeout=httpx.Timeout(timeout),
        transport=transport,
        follow_redirects=True,
    )


async def make_request(
    uri: str,
    method: str = "GET",
    *,
    headers: Optional[Mapping[str, str]] = None,
    body: Any = None,
    verify_tls: bool = True,
    timeout: float = DEFAULT_REQUEST_TIMEOUT,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> dict[str, Any]:
    """
    Issue an HTTP(S) request.

    Args:
        uri: Absolute http:// or https:// URL
        method: HTTP method
        headers: Extra request headers
        body: dict/list sent as JSON, str/bytes sent raw
        verify_tls: Verify server certificates
        timeout: Per-request timeout in seconds
        transport: Optional httpx transport (tests inject a MockTransport)

    Returns:
        {"code": status_code, "body": parsed_body}; non-2xx statuses are
        returned, not raised

    Raises:
        UnknownLocationType: For a non-HTTP scheme
        TransportError: On connection/timeout/protocol failures
    """
    scheme = get_scheme(uri)
    if scheme not in HTTP_SCHEMES:
        raise UnknownLocationType(scheme or uri)

    request_kwargs: dict[str, Any] = {"headers": dict(headers or {})}
    if isinstance(body, (dict, list)):
        request_kwargs["json"] = body
    elif body is not None:
        request_kwargs["content"] = body

    try:
        async with _make_client(verify_tls, timeout, transport) as client:
            response = await client.request(method, uri, **request_kwargs)
    except httpx.HTTPError as e:
        raise TransportError(f"{method} {uri} failed: {type(e).__name__}: {e}") from e

    logger.debug(f"{method} {uri} -> {response.status_code}")
    return {"code": response.status_code, "body": _parse_response_body(response)}


async def load_data(
    location: str,
    options: Optional[Mapping[str, Any]] = None,
    *,
    cloud_client: Any = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Any:
    """
    Load and parse content from a location.

    Options:
        location_type: "file" | "url" | "secret" | "metadata" (informational
            for file/url; selects the cloud call for anything else)
        verify_tls: Verify certificates for https (default True)
        headers: Request headers for http(s)
        timeout: Per-request timeout in seconds
        provider: Provider spec passed to the cloud client

    Args:
        location: URI to load
        options: Loader options
        cloud_client: CloudClient used for secret/metadata locations
        transport: Optional httpx transport

    Returns:
        Parsed content (see module docstring)

    Raises:
        UnknownLocationType: If no fetcher can resolve the location
        ConfigError: For a file:// location that is not an absolute path
        TransportError: On network failures
    """
    options = options or {}
    scheme = get_scheme(location)
    location_type = options.get("location_type")

    if scheme == "file":
        path = _file_path(location)
        text = await asyncio.to_thread(path.read_text)
        return _parse_text(text)

    if scheme in HTTP_SCHEMES:
        return await make_request(
            location,
            headers=options.get("headers"),
            verify_tls=options.get("verify_tls", True),
            timeout=options.get("timeout", DEFAULT_REQUEST_TIMEOUT),
            transport=transport,
        )

    if location_type in CLOUD_LOCATION_TYPES and cloud_client is not None:
        provider = dict(options.get("provider") or {})
        provider.setdefault("uri", location)
        if location_type == "secret":
            return await cloud_client.get_secret(provider)
        return await cloud_client.get_metadata(provider)

    raise UnknownLocationType(scheme or location_type or location)


async def download_to_file(
    url: str,
    file_path: Union[str, Path],
    *,
    verify_tls: bool = True,
    timeout: float = DEFAULT_REQUEST_TIMEOUT,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Path:
    """
    Stream a URL's body to a local file.

    The body is written to a sibling ".part" file and moved into place only
    after the whole body arrived, so a failed download never leaves a file
    at file_path. A file:// source that already is file_path is left as-is.

    Args:
        url: http(s):// or absolute file:// source
        file_path: Destination path (parent created if absent)
        verify_tls: Verify certificates for https
        timeout: Per-request timeout in seconds
        transport: Optional httpx transport

    Returns:
        Destination path

    Raises:
        TransportError: On network failures (cause text preserved)
        ApplicationError: On a non-2xx response
        UnknownLocationType: For any other scheme
        ConfigError: For a file:// source that is not an absolute path
    """
    destination = Path(file_path)
    verify_directory(destination.parent)
    scheme = get_scheme(url)

    if scheme != "file" and scheme not in HTTP_SCHEMES:
        raise UnknownLocationType(scheme or url)

    partial = destination.with_name(destination.name + ".part")

    if scheme == "file":
        source = _file_path(url)
        # pre-staged package, nothing to copy
        if source.resolve() == destination.resolve():
            return destination
        try:
            await asyncio.to_thread(shutil.copyfile, source, partial)
            os.replace(partial, destination)
        except BaseException:
            partial.unlink(missing_ok=True)
            raise
        return destination

    try:
        async with _make_client(verify_tls, timeout, transport) as client:
            async with client.stream("GET", url) as response:
                if not response.is_success:
                    await response.aread()
                    raise ApplicationError(
                        f"Download of {url} failed", response.status_code, response.text
                    )
                with open(partial, "wb") as f:
                    async for chunk in response.aiter_bytes():
                        f.write(chunk)
        os.replace(partial, destination)
    except httpx.HTTPError as e:
        partial.unlink(missing_ok=True)
        raise TransportError(f"Download of {url} failed: {type(e).__name__}: {e}") from e
    except BaseException:
        partial.unlink(missing_ok=True)
        raise

    logger.info(f"Downloaded {url} to {destination}")
    return destination
