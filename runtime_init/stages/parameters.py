"""Resolve runtime parameters into the shared context."""

from runtime_init.parameters import PHASE_NAME, resolve_runtime_parameters
from runtime_init.stages.base import Stage, StageResult


class ParameterStage(Stage):
    """Resolves every runtime parameter, in declaration order, exactly once."""

    def __init__(self, context, logger=None):
        super().__init__(PHASE_NAME, context, logger)

    async def execute(self) -> StageResult:
        config = self.context.config
        parameters = await resolve_runtime_parameters(
            config.runtime_parameters,
            policy=config.controls.retry,
            cloud_clients=self.context.cloud_clients,
            transport=self.context.transport,
            timeout=self.context.settings.request_timeout,
        )
        self.context.set_parameters(parameters)

        return StageResult(
            stage_name=self.name,
            success=True,
            operations=list(parameters.keys()),
        )
