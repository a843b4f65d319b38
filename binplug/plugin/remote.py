"""
Remote collaborators for the plugin subsystem.

This module talks to the network on behalf of the Manifest Store and the
Installer:
- The authenticated metadata endpoint that names the artifact base URL
- Plain GETs for the manifest body and release binaries
"""

import logging
from dataclasses import dataclass

import httpx

from binplug import __version__
from binplug.config import Settings
from binplug.errors import RemoteError

logger = logging.getLogger(__name__)

PLUGIN_DATA_PATH = "/v1/plugins/metadata"


@dataclass(frozen=True)
class PluginData:
    """
    Plugin hosting metadata.

    Attributes:
        plugin_base_url: Base URL under which manifests and binaries live
    """

    plugin_base_url: str


def create_http_client(
    settings: Settings, transport: httpx.AsyncBaseTransport | None = None
) -> httpx.AsyncClient:
    """
    Build the HTTP client shared by one invocation.

    Args:
        settings: Resolved settings
        transport: Optional transport override (tests use httpx.MockTransport)

    Returns:
        Configured httpx.AsyncClient
    """
    return httpx.AsyncClient(
        timeout=settings.http_timeout,
        follow_redirects=True,
        headers={"User-Agent": f"binplug/{__version__}"},
        transport=transport,
    )


async def fetch_remote_resource(http: httpx.AsyncClient, url: str) -> bytes:
    """
    Fetch a remote resource and return its full body.

    The response stream is read to completion once, then closed.

    Args:
        http: HTTP client
        url: Absolute URL

    Returns:
        Response body

    Raises:
        RemoteError: On transport failure or a non-2xx status
    """
    logger.debug("GET %s", url)
    try:
        async with http.stream("GET", url) as response:
            if not response.is_success:
                raise RemoteError(
                    f"Request to {url} failed with status {response.status_code}"
                )
            return await response.aread()
    except httpx.HTTPError as e:
        raise RemoteError(f"Request to {url} failed: {e}") from e


class PluginDataClient:
    """
    Client for the authenticated plugin metadata endpoint.

    The metadata is fetched at most once per client instance.
    """

    def __init__(self, settings: Settings, http: httpx.AsyncClient):
        self.settings = settings
        self.http = http
        self._data: PluginData | None = None

    async def get_plugin_data(self) -> PluginData:
        """
        Resolve the plugin hosting base URL.

        Returns:
            PluginData for this session

        Raises:
            RemoteError: If credentials are missing or the request fails
        """
        if self._data is not None:
            return self._data

        if not self.settings.api_base_url:
            raise RemoteError(
                "No plugin API base URL configured. "
                "Set api_base in config.toml or BINPLUG_API_BASE."
            )
        if not self.settings.api_key:
            raise RemoteError(
                "No API key configured. Set api_key in config.toml or BINPLUG_API_KEY."
            )

        url = self.settings.api_base_url.rstrip("/") + PLUGIN_DATA_PATH
        try:
            response = await self.http.get(url, auth=(self.settings.api_key, ""))
        except httpx.HTTPError as e:
            raise RemoteError(f"Failed to fetch plugin metadata: {e}") from e

        if not response.is_success:
            raise RemoteError(
                f"Failed to fetch plugin metadata: status {response.status_code}"
            )

        try:
            body = response.json()
        except ValueError as e:
            raise RemoteError(f"Plugin metadata is not valid JSON: {e}") from e

        base_url = body.get("plugin_base_url") if isinstance(body, dict) else None
        if not isinstance(base_url, str) or not base_url:
            raise RemoteError("Plugin metadata response has no plugin_base_url")

        self._data = PluginData(plugin_base_url=base_url.rstrip("/"))
        return self._data
