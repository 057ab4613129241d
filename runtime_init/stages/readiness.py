"""Wait for the management API to report ready."""

from runtime_init.stages.base import Stage, StageResult


class ReadinessStage(Stage):
    """
    Polls the device readiness endpoint until it reports ready.

    Runs twice per onboarding: before pre_onboard_enabled and again before
    bigip_ready_enabled, since pre-onboard commands may restart services.
    """

    async def execute(self) -> StageResult:
        client = self.context.management_client
        try:
            await client.is_ready()
        except Exception as e:
            raise self.fail("is_ready", e) from e

        return StageResult(
            stage_name=self.name,
            success=True,
            operations=["is_ready"],
            metadata={"ready_state": client.ready_state.value if client.ready_state else None},
        )
