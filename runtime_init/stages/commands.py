"""
Command phases: pre_onboard_enabled, bigip_ready_enabled, post_onboard_enabled.

Each operation's commands are rendered with the runtime parameters and run
in list order:

- inline  run through /bin/sh
- file    local executable path, must exist
- url     script downloaded into the scratch directory (verifyTls honored),
          chmod 0755, then run

An operation is retried as a whole under its retry policy. Unless it sets
continueOnError, an operation that exhausts its retries aborts the phase.
"""

import os
import shlex
from pathlib import Path
from typing import List, Optional, Sequence
from urllib.parse import urlsplit

from runtime_init.config import OnboardOperation
from runtime_init.resolver import download_to_file
from runtime_init.shell import CmdResult, run_shell_command
from runtime_init.stages.base import OnboardContext, Stage, StageResult
from runtime_init.utils import retrier


class CommandStage(Stage):
    """Runs one command phase."""

    def __init__(
        self,
        name: str,
        context: OnboardContext,
        operations: Optional[Sequence[OnboardOperation]] = None,
        logger=None,
    ):
        super().__init__(name, context, logger)
        if operations is None:
            operations = context.config.phases.get(name, ())
        self.operations = tuple(operations)

    async def _resolve_command(self, operation: OnboardOperation, index: int, command: str) -> str:
        rendered = self.context.render(command)

        if operation.type == "inline":
            return rendered

        if operation.type == "file":
            path = Path(rendered)
            if not path.is_file():
                raise FileNotFoundError(f"Command file not found: {path}")
            return shlex.quote(str(path))

        settings = self.context.settings
        basename = urlsplit(rendered).path.rstrip("/").rsplit("/", 1)[-1] or "script"
        script = settings.scratch_dir / f"{operation.name}_{index}_{basename}"
        await download_to_file(
            rendered,
            script,
            verify_tls=operation.verify_tls,
            timeout=settings.request_timeout,
            transport=self.context.transport,
        )
        os.chmod(script, 0o755)
        return shlex.quote(str(script))

    async def _run_operation(self, operation: OnboardOperation) -> List[CmdResult]:
        results = []
        for index, command in enumerate(operation.commands):
            resolved = await self._resolve_command(operation, index, command)
            results.append(await run_shell_command(resolved))
        return results

    async def execute(self) -> StageResult:
        default_policy = self.context.config.controls.retry
        completed: List[str] = []
        tolerated: List[str] = []

        for operation in self.operations:
            self.logger.info(
                f"Running operation {operation.name} ({operation.type}, {len(operation.commands)} command(s))",
                extra={"stage": self.name, "event": "operation_started"},
            )
            try:
                await retrier(
                    self._run_operation,
                    operation,
                    policy=operation.retry_policy(default_policy),
                    logger=self.logger,
                )
            except Exception as e:
                if not operation.continue_on_error:
                    raise self.fail(operation.name, e) from e
                self.logger.warning(
                    f"Operation {operation.name} failed, continuing: {e}",
                    extra={"stage": self.name, "event": "operation_tolerated"},
                )
                tolerated.append(operation.name)
                continue

            completed.append(operation.name)
            self.logger.info(
                f"Operation {operation.name} completed",
                extra={"stage": self.name, "event": "operation_completed"},
            )

        return StageResult(
            stage_name=self.name,
            success=True,
            operations=completed,
            metadata={"tolerated_failures": tolerated} if tolerated else {},
        )
