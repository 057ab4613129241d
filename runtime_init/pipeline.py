"""
Onboarding orchestrator for runtime-init.

Coordinates execution of the onboarding stages, strictly in sequence:

    runtime_parameters -> initial_ready_check -> pre_onboard_enabled ->
    bigip_ready_check -> bigip_ready_enabled -> extension_packages ->
    extension_services -> post_onboard_enabled

The first failed stage stops the run (fail-fast). Nothing is rolled back.
"""

import json
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional

import httpx

from runtime_init.bigip.management_client import ManagementClient
from runtime_init.cloud.registry import CloudClientRegistry
from runtime_init.config import COMMAND_PHASES, OnboardConfig, RuntimeSettings
from runtime_init.errors import PhaseError
from runtime_init.stages import (
    CommandStage,
    ExtensionInstallStage,
    ExtensionServiceStage,
    OnboardContext,
    ParameterStage,
    ReadinessStage,
    Stage,
    StageResult,
)
from runtime_init.utils import (
    format_duration,
    print_banner,
    print_error,
    print_info,
    print_success,
    print_warning,
    verify_directory,
)

STAGE_ORDER = (
    "runtime_parameters",
    "initial_ready_check",
    "pre_onboard_enabled",
    "bigip_ready_check",
    "bigip_ready_enabled",
    "extension_packages",
    "extension_services",
    "post_onboard_enabled",
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class PipelineResult:
    """Result of a complete onboarding run."""

    success: bool
    started_at: datetime
    ended_at: datetime
    duration_seconds: float
    stages: Dict[str, StageResult] = field(default_factory=dict)
    error_message: Optional[str] = None
    error: Optional[PhaseError] = None
    failed_phase: Optional[str] = None
    failed_operation: Optional[str] = None
    dry_run: bool = False

    def to_dict(self) -> Dict:
        """Convert to dictionary for serialization."""
        return {
            "success": self.success,
            "started_at": self.started_at.isoformat(),
            "ended_at": self.ended_at.isoformat(),
            "duration_seconds": self.duration_seconds,
            "stages": {name: result.to_dict() for name, result in self.stages.items()},
            "error_message": self.error_message,
            "failed_phase": self.failed_phase,
            "failed_operation": self.failed_operation,
            "dry_run": self.dry_run,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "PipelineResult":
        """Rebuild a result from its saved form (without live exceptions)."""
        stages = {}
        for name, stage in (data.get("stages") or {}).items():
            stages[name] = StageResult(
                stage_name=stage.get("stage_name", name),
                success=bool(stage.get("success")),
                duration_seconds=float(stage.get("duration_seconds") or 0.0),
                operations=list(stage.get("operations") or []),
                error_message=stage.get("error_message"),
                metadata=dict(stage.get("metadata") or {}),
            )
        return cls(
            success=bool(data["success"]),
            started_at=datetime.fromisoformat(data["started_at"]),
            ended_at=datetime.fromisoformat(data["ended_at"]),
            duration_seconds=float(data["duration_seconds"]),
            stages=stages,
            error_message=data.get("error_message"),
            failed_phase=data.get("failed_phase"),
            failed_operation=data.get("failed_operation"),
            dry_run=bool(data.get("dry_run", False)),
        )


class Onboarder:
    """
    Main onboarding orchestrator.

    Owns the document, the resolved runtime parameters and the management
    client for the duration of one run.
    """

    def __init__(
        self,
        config: OnboardConfig,
        settings: Optional[RuntimeSettings] = None,
        management_client: Optional[ManagementClient] = None,
        cloud_clients: Optional[CloudClientRegistry] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        logger: Optional[logging.Logger] = None,
    ):
        """
        Initialize the orchestrator.

        Args:
            config: Validated onboarding document
            settings: Process settings (defaults to RuntimeSettings())
            management_client: Client to use (built from settings when None)
            cloud_clients: Registry for secret/metadata parameters
            transport: Optional httpx transport shared by every HTTP call
            logger: Logger instance
        """
        self.config = config
        self.settings = settings or RuntimeSettings()
        self.management_client = management_client
        self.cloud_clients = cloud_clients or CloudClientRegistry()
        self.transport = transport
        self.logger = logger or logging.getLogger("runtime_init")

    def validate(self) -> None:
        """
        Validate the document and print a per-section summary.

        Raises:
            ConfigError: If validation fails
        """
        print_info("Validating configuration...")
        try:
            self.config.validate()
        except Exception as e:
            print_error(f"Configuration invalid: {e}")
            raise

        for section, count in self.config.summary().items():
            print_success(f"  {section}: {count}")

    def _create_management_client(self) -> ManagementClient:
        settings = self.settings
        ready_check = self.config.controls.ready_check
        return ManagementClient(
            host=settings.mgmt_host,
            port=settings.mgmt_port,
            user=settings.mgmt_user,
            password=settings.mgmt_password,
            protocol=settings.mgmt_protocol,
            verify_tls=settings.mgmt_verify_tls,
            max_retries=ready_check.max_retries,
            retry_interval=ready_check.retry_interval,
            timeout=settings.request_timeout,
            transport=self.transport,
        )

    def build_stages(self, context: OnboardContext) -> List[Stage]:
        """
        Create the stages of a run in execution order.

        Args:
            context: Shared run context

        Returns:
            Stage instances, ordered as STAGE_ORDER
        """
        pre, ready, post = COMMAND_PHASES
        return [
            ParameterStage(context, self.logger),
            ReadinessStage("initial_ready_check", context, self.logger),
            CommandStage(pre, context, logger=self.logger),
            ReadinessStage("bigip_ready_check", context, self.logger),
            CommandStage(ready, context, logger=self.logger),
            ExtensionInstallStage(context, self.logger),
            ExtensionServiceStage(context, self.logger),
            CommandStage(post, context, logger=self.logger),
        ]

    async def run(self, dry_run: bool = False) -> PipelineResult:
        """
        Run every onboarding stage in order.

        Args:
            dry_run: Validate and list stages only, contact nothing

        Returns:
            PipelineResult with execution details
        """
        started_at = _utcnow()
        start_time = time.time()

        self.logger.info(
            "Starting onboarding",
            extra={
                "event": "pipeline_started",
                "metadata": {"config": str(self.config.config_path), "dry_run": dry_run},
            },
        )
        print_banner("runtime-init")

        try:
            self.validate()
        except Exception as e:
            return PipelineResult(
                success=False,
                started_at=started_at,
                ended_at=_utcnow(),
                duration_seconds=time.time() - start_time,
                error_message=str(e),
                dry_run=dry_run,
            )

        if dry_run:
            print_info("Dry run mode - validation complete, skipping execution")
            for name in STAGE_ORDER:
                print_info(f"  would run: {name}")
            return PipelineResult(
                success=True,
                started_at=started_at,
                ended_at=_utcnow(),
                duration_seconds=time.time() - start_time,
                dry_run=True,
            )

        owns_client = self.management_client is None
        client = self.management_client or self._create_management_client()
        context = OnboardContext(
            self.config,
            self.settings,
            client,
            cloud_clients=self.cloud_clients,
            transport=self.transport,
        )

        stage_results: Dict[str, StageResult] = {}
        failure: Optional[StageResult] = None

        try:
            for stage in self.build_stages(context):
                result = await stage.run()
                stage_results[stage.name] = result

                if not result.success:
                    print_error(f"{stage.name}: {result.error_message}")
                    failure = result
                    break

                tolerated = result.metadata.get("tolerated_failures")
                if tolerated:
                    print_warning(f"{stage.name}: tolerated failures in {', '.join(tolerated)}")
                print_success(
                    f"{stage.name}: {len(result.operations)} operation(s), "
                    f"{format_duration(result.duration_seconds)}"
                )
        finally:
            if owns_client:
                await client.aclose()

        duration = time.time() - start_time

        if failure is not None:
            self.logger.error(
                f"Onboarding failed at stage {failure.stage_name}",
                extra={
                    "event": "pipeline_failed",
                    "stage": failure.stage_name,
                    "metadata": {"error": failure.error_message},
                },
            )
            result = PipelineResult(
                success=False,
                started_at=started_at,
                ended_at=_utcnow(),
                duration_seconds=duration,
                stages=stage_results,
                error_message=failure.error_message,
                error=failure.error,
                failed_phase=failure.error.phase if failure.error else failure.stage_name,
                failed_operation=failure.error.operation if failure.error else None,
            )
        else:
            print_success(f"Onboarding completed successfully in {format_duration(duration)}")
            self.logger.info(
                "Onboarding completed successfully",
                extra={"event": "pipeline_completed", "metadata": {"duration_seconds": duration}},
            )
            result = PipelineResult(
                success=True,
                started_at=started_at,
                ended_at=_utcnow(),
                duration_seconds=duration,
                stages=stage_results,
            )

        self._save_state(result)
        return result

    def _save_state(self, result: PipelineResult) -> None:
        """
        Save the run summary to the state file.

        Args:
            result: Pipeline result to save
        """
        state_file = self.settings.state_file
        try:
            verify_directory(state_file.parent)
            with open(state_file, "w") as f:
                json.dump(result.to_dict(), f, indent=2)

            self.logger.debug(
                f"Saved run state to {state_file}",
                extra={"event": "state_saved", "metadata": {"file": str(state_file)}},
            )

        except OSError as e:
            self.logger.warning(
                f"Could not save run state: {e}",
                extra={"event": "state_save_failed", "metadata": {"error": str(e)}},
            )


def load_status(settings: RuntimeSettings) -> Optional[PipelineResult]:
    """
    Get the result of the last run.

    Returns:
        PipelineResult from the last run, or None if no run was recorded
    """
    state_file = settings.state_file
    if not state_file.exists():
        return None

    with open(state_file, "r") as f:
        return PipelineResult.from_dict(json.load(f))
