"""
Cloud client registry.

Maps provider environment names (aws, azure, gcp, ...) to CloudClient
factories. Providers are installed as separate distributions and announce
themselves through the `runtime_init.cloud_clients` entry-point group:

    [project.entry-points."runtime_init.cloud_clients"]
    aws = "runtime_init_aws:AwsCloudClient"

Each entry point must load a callable taking the environment name and
returning a CloudClient.
"""

import logging
from importlib.metadata import entry_points
from typing import Callable, Optional

from runtime_init.cloud.base import CloudClient
from runtime_init.errors import UnknownCloudEnvironment

logger = logging.getLogger(__name__)

ENTRY_POINT_GROUP = "runtime_init.cloud_clients"

CloudClientFactory = Callable[[str], CloudClient]


class CloudClientRegistry:
    """
    Registry of cloud client factories keyed by environment name.

    Clients are created and initialized on first use, then reused for the
    rest of the run.

    Usage:
        registry = CloudClientRegistry()
        registry.register("aws", AwsCloudClient)
        client = await registry.get("aws")

        # Or pick up installed providers
        registry = CloudClientRegistry.discover()
    """

    def __init__(self) -> None:
        """Initialize an empty registry."""
        self._factories: dict[str, CloudClientFactory] = {}
        self._clients: dict[str, CloudClient] = {}

    def register(self, environment: str, factory: CloudClientFactory) -> None:
        """
        Register a client factory for an environment.

        Args:
            environment: Provider environment name
            factory: Callable returning a CloudClient for that environment
        """
        self._factories[environment] = factory
        self._clients.pop(environment, None)

    def has(self, environment: str) -> bool:
        """Check if a factory is registered for an environment."""
        return environment in self._factories

    @property
    def environments(self) -> list[str]:
        """Registered environment names."""
        return sorted(self._factories)

    async def get(self, environment: Optional[str]) -> CloudClient:
        """
        Get the client for an environment, creating it on first use.

        Raises:
            UnknownCloudEnvironment: If nothing is registered for the environment
        """
        if environment in self._clients:
            return self._clients[environment]

        if environment not in self._factories:
            raise UnknownCloudEnvironment(
                f"No cloud client registered for environment: {environment}. "
                f"Registered: {self.environments}"
            )

        client = self._factories[environment](environment)
        await client.init()
        self._clients[environment] = client
        logger.info(f"Initialized cloud client for environment: {environment}")
        return client

    @classmethod
    def discover(cls) -> "CloudClientRegistry":
        """
        Create a registry populated from installed entry points.

        Returns:
            CloudClientRegistry with every discovered provider registered
        """
        registry = cls()
        for ep in entry_points().select(group=ENTRY_POINT_GROUP):
            registry.register(ep.name, ep.load())
            logger.debug(f"Discovered cloud client: {ep.name} ({ep.value})")
        return registry
