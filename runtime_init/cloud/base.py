"""
Base cloud client.

A cloud client exposes two capabilities to the onboarding engine:

- get_secret(spec)    read a value from the provider's secret store
- get_metadata(spec)  read a value from the provider's instance metadata

Provider implementations live outside this package and subclass
CloudClient. The engine only calls through this interface.
"""

import logging
from typing import Any, Optional


class CloudClient:
    """
    Cloud-agnostic client interface.

    Subclasses override get_secret() and get_metadata(); the base versions
    raise NotImplementedError.
    """

    def __init__(self, environment: str, logger: Optional[logging.Logger] = None):
        """
        Initialize the client.

        Args:
            environment: Provider environment name (e.g. "aws", "azure", "gcp")
            logger: Logger instance (defaults to this module's logger)
        """
        self.environment = environment
        self.logger = logger or logging.getLogger(__name__)

    async def init(self) -> None:
        """Prepare provider sessions. Called once before first use."""
        pass

    async def get_secret(self, spec: dict[str, Any]) -> str:
        """
        Get a secret value.

        Args:
            spec: Provider-specific secret description (secretProvider block)
        """
        raise NotImplementedError(
            f"get_secret must be implemented by the '{self.environment}' cloud client"
        )

    async def get_metadata(self, spec: dict[str, Any]) -> str:
        """
        Get an instance metadata value.

        Args:
            spec: Provider-specific metadata description (metadataProvider block)
        """
        raise NotImplementedError(
            f"get_metadata must be implemented by the '{self.environment}' cloud client"
        )

    def __repr__(self) -> str:
        return f"{type(self).__name__}(environment={self.environment})"
