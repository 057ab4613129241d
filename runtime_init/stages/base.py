"""
Base classes for onboarding stages.

All stages inherit from Stage and return StageResult. Stages share one
OnboardContext holding the document, settings, clients and the resolved
runtime parameters.
"""

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional

import httpx

from runtime_init.bigip.management_client import ManagementClient
from runtime_init.cloud.registry import CloudClientRegistry
from runtime_init.config import OnboardConfig, RuntimeSettings
from runtime_init.errors import PhaseError
from runtime_init.render import render_data


def _utcnow() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


@dataclass
class StageResult:
    """Result of stage execution."""

    stage_name: str
    success: bool
    duration_seconds: float = 0.0
    operations: List[str] = field(default_factory=list)
    error: Optional[PhaseError] = None
    error_message: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging."""
        return {
            "stage_name": self.stage_name,
            "success": self.success,
            "duration_seconds": self.duration_seconds,
            "operations": list(self.operations),
            "failed_operation": self.error.operation if self.error else None,
            "error_message": self.error_message,
            "metadata": self.metadata,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "ended_at": self.ended_at.isoformat() if self.ended_at else None,
        }


class OnboardContext:
    """
    Shared state for one onboarding run.

    The runtime parameter mapping is written once by the parameter stage
    and read by every later stage.
    """

    def __init__(
        self,
        config: OnboardConfig,
        settings: RuntimeSettings,
        management_client: ManagementClient,
        cloud_clients: Optional[CloudClientRegistry] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = config
        self.settings = settings
        self.management_client = management_client
        self.cloud_clients = cloud_clients or CloudClientRegistry()
        self.transport = transport
        self._parameters: Optional[Mapping[str, Any]] = None

    @property
    def parameters(self) -> Mapping[str, Any]:
        if self._parameters is None:
            return MappingProxyType({})
        return self._parameters

    def set_parameters(self, parameters: Mapping[str, Any]) -> None:
        if self._parameters is not None:
            raise RuntimeError("Runtime parameters are already resolved")
        self._parameters = MappingProxyType(dict(parameters))

    def render(self, template: str) -> str:
        """Render text with the resolved runtime parameters."""
        return render_data(template, self.parameters)


class Stage(ABC):
    """
    Abstract base class for onboarding stages.

    Each stage must implement:
    - execute(): Run the stage, raising PhaseError on the first unrecoverable failure

    and may override:
    - validate(): Check prerequisites before execution
    - cleanup(): Release resources after execution
    """

    def __init__(self, name: str, context: OnboardContext, logger: Optional[logging.Logger] = None):
        """
        Initialize stage.

        Args:
            name: Stage (phase) name
            context: Shared run context
            logger: Logger instance
        """
        self.name = name
        self.context = context
        self.logger = logger or logging.getLogger(__name__)

    def validate(self) -> None:
        """
        Validate stage prerequisites.

        Raises:
            Exception: If validation fails
        """
        pass

    @abstractmethod
    async def execute(self) -> StageResult:
        """
        Execute the stage.

        Returns:
            StageResult with execution details

        Raises:
            PhaseError: If an operation fails
        """
        pass

    async def cleanup(self) -> None:
        """
        Clean up resources after stage execution.

        Override if stage needs cleanup.
        """
        pass

    def fail(self, operation: str, cause: BaseException) -> PhaseError:
        """Build the PhaseError for a failed operation of this stage."""
        if isinstance(cause, PhaseError):
            return cause
        return PhaseError(self.name, operation, cause)

    async def run(self) -> StageResult:
        """
        Run the complete stage lifecycle.

        Returns:
            StageResult with execution details
        """
        self.logger.info(
            f"Starting stage: {self.name}",
            extra={"stage": self.name, "event": "stage_started"},
        )

        started_at = _utcnow()
        start_time = time.time()

        try:
            self.validate()
            result = await self.execute()
            result.started_at = started_at
            result.ended_at = _utcnow()
            result.duration_seconds = time.time() - start_time

            self.logger.info(
                f"Stage {self.name} completed successfully",
                extra={
                    "stage": self.name,
                    "event": "stage_completed",
                    "metadata": {
                        "duration_seconds": result.duration_seconds,
                        "operations": result.operations,
                    },
                },
            )
            return result

        except Exception as e:
            error = self.fail(self.name, e)
            self.logger.error(
                f"Stage {self.name} failed: {error}",
                extra={
                    "stage": self.name,
                    "event": "stage_failed",
                    "metadata": {"operation": error.operation, "exception": str(error.cause)},
                },
                exc_info=True,
            )
            return StageResult(
                stage_name=self.name,
                success=False,
                duration_seconds=time.time() - start_time,
                error=error,
                error_message=str(error),
                started_at=started_at,
                ended_at=_utcnow(),
            )

        finally:
            try:
                await self.cleanup()
            except Exception as e:
                self.logger.warning(
                    f"Stage {self.name} cleanup failed: {e}",
                    extra={"stage": self.name, "event": "cleanup_failed"},
                )
