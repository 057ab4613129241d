"""
Extension stages.

ExtensionInstallStage (extension_packages), per install operation:
    download -> verify hash -> INSTALL task (one accepted POST) -> poll task ->
    poll verification endpoint

ExtensionServiceStage (extension_services), per service operation:
    load payload -> render -> one POST/PATCH to the declare endpoint
"""

from pathlib import Path
from typing import Any, List, Mapping
from urllib.parse import urlsplit

import yaml

from runtime_init.config import ExtensionInstallSpec, ServiceOperation
from runtime_init.errors import ApplicationError, ConfigError, RuntimeInitError, VerificationFailed
from runtime_init.extensions import PACKAGE_MANAGEMENT_ENDPOINT
from runtime_init.resolver import HTTP_SCHEMES, download_to_file, get_scheme, load_data
from runtime_init.stages.base import Stage, StageResult
from runtime_init.utils import retrier, verify_hash

TASK_FINISHED = "FINISHED"
TASK_FAILED = "FAILED"


class TaskPending(RuntimeInitError):
    """Package management task has not reached a terminal status yet."""
    pass


class ExtensionInstallStage(Stage):
    """Installs every entry of extension_packages.install_operations."""

    def __init__(self, context, logger=None):
        super().__init__("extension_packages", context, logger)

    async def _download(self, spec: ExtensionInstallSpec) -> Path:
        settings = self.context.settings
        url = self.context.render(spec.package_url)
        filename = urlsplit(url).path.rstrip("/").rsplit("/", 1)[-1]
        destination = settings.downloads_dir / filename
        return await retrier(
            download_to_file,
            url,
            destination,
            timeout=settings.request_timeout,
            transport=self.context.transport,
            policy=self.context.config.controls.retry,
            logger=self.logger,
        )

    def _verify(self, spec: ExtensionInstallSpec, package: Path) -> None:
        policy = self.context.config.controls.extension_hash_policy

        if not spec.extension_hash:
            if policy == "require":
                raise VerificationFailed(f"No extensionHash given for {package.name}")
            if policy == "warn":
                self.logger.warning(
                    f"No extensionHash given for {package.name}, installing unverified",
                    extra={"stage": self.name, "event": "hash_missing"},
                )
            return

        if not verify_hash(package, spec.extension_hash):
            package.unlink(missing_ok=True)
            raise VerificationFailed(f"Hash verification failed for {package.name}")

        self.logger.info(
            f"Hash verified for {package.name}",
            extra={"stage": self.name, "event": "hash_verified"},
        )

    async def _poll_task(self, task_id: str) -> Mapping[str, Any]:
        response = await self.context.management_client.request(
            "GET", f"{PACKAGE_MANAGEMENT_ENDPOINT}/{task_id}"
        )
        body = response["body"] if isinstance(response["body"], Mapping) else {}
        status = body.get("status")
        if status not in (TASK_FINISHED, TASK_FAILED):
            raise TaskPending(f"Install task {task_id} is {status}")
        return body

    async def _install(self, spec: ExtensionInstallSpec) -> None:
        client = self.context.management_client
        controls = self.context.config.controls

        package = await self._download(spec)
        self._verify(spec, package)

        response = await retrier(
            client.request,
            "POST",
            PACKAGE_MANAGEMENT_ENDPOINT,
            {"operation": "INSTALL", "packageFilePath": str(package)},
            policy=controls.retry,
            logger=self.logger,
        )
        task = response["body"] if isinstance(response["body"], Mapping) else {}

        task_id = task.get("id")
        if task_id:
            result = await retrier(
                self._poll_task, task_id, policy=controls.ready_check, logger=self.logger
            )
            if result.get("status") == TASK_FAILED:
                raise ApplicationError(
                    f"Install task {task_id} failed: {result.get('errorMessage', 'unknown error')}",
                    response["code"],
                    result,
                )

        await retrier(
            client.request,
            "GET",
            spec.verification_endpoint,
            policy=controls.ready_check,
            logger=self.logger,
        )

    async def execute(self) -> StageResult:
        installed: List[str] = []
        for spec in self.context.config.install_operations:
            self.logger.info(
                f"Installing extension {spec.name}",
                extra={"stage": self.name, "event": "operation_started"},
            )
            try:
                await self._install(spec)
            except Exception as e:
                raise self.fail(spec.name, e) from e
            installed.append(spec.name)
            self.logger.info(
                f"Extension {spec.name} installed",
                extra={"stage": self.name, "event": "operation_completed"},
            )

        return StageResult(stage_name=self.name, success=True, operations=installed)


class ExtensionServiceStage(Stage):
    """Applies every entry of extension_services.service_operations."""

    def __init__(self, context, logger=None):
        super().__init__("extension_services", context, logger)

    def _render(self, value: Any) -> Any:
        if isinstance(value, str):
            return self.context.render(value)
        if isinstance(value, Mapping):
            return {key: self._render(item) for key, item in value.items()}
        if isinstance(value, list):
            return [self._render(item) for item in value]
        return value

    async def _load_payload(self, operation: ServiceOperation) -> Any:
        if operation.type == "inline":
            payload = operation.value
        else:
            location = self.context.render(str(operation.value))
            payload = await retrier(
                load_data,
                location,
                {"location_type": "url", "timeout": self.context.settings.request_timeout},
                transport=self.context.transport,
                policy=self.context.config.controls.retry,
                logger=self.logger,
            )
            if get_scheme(location) in HTTP_SCHEMES:
                if not 200 <= payload["code"] < 300:
                    raise ApplicationError(f"GET {location} was rejected", payload["code"], payload["body"])
                payload = payload["body"]

        if isinstance(payload, str):
            try:
                payload = yaml.safe_load(payload)
            except yaml.YAMLError as e:
                raise ConfigError(f"Declaration for {operation.name} is not valid JSON/YAML: {e}")

        if not isinstance(payload, (Mapping, list)):
            raise ConfigError(f"Declaration for {operation.name} must be an object, got: {type(payload).__name__}")
        return self._render(payload)

    async def _apply(self, operation: ServiceOperation) -> None:
        declaration = await self._load_payload(operation)
        await retrier(
            self.context.management_client.request,
            operation.method,
            operation.declare_endpoint,
            declaration,
            policy=self.context.config.controls.retry,
            logger=self.logger,
        )

    async def execute(self) -> StageResult:
        applied: List[str] = []
        for operation in self.context.config.service_operations:
            self.logger.info(
                f"Applying {operation.name} declaration ({operation.method} {operation.declare_endpoint})",
                extra={"stage": self.name, "event": "operation_started"},
            )
            try:
                await self._apply(operation)
            except Exception as e:
                raise self.fail(operation.name, e) from e
            applied.append(operation.name)

        return StageResult(stage_name=self.name, success=True, operations=applied)
