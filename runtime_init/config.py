"""
Configuration management for runtime-init.

Two kinds of configuration:

- OnboardConfig: the declarative onboarding document (YAML or JSON) naming
  runtime parameters, command phases, extension packages and extension
  services. Loaded once and read-only afterwards.
- RuntimeSettings: process settings read once from the environment (and an
  optional dotenv file) at startup, then passed down explicitly.
"""

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

import yaml
from dotenv import dotenv_values

from runtime_init.errors import ConfigError
from runtime_init.extensions import DOWNLOADS_DIR, EXTENSIONS, get_extension
from runtime_init.utils import RetryPolicy

PARAMETER_TYPES = ("secret", "metadata", "url", "static")
OPERATION_TYPES = ("inline", "file", "url")
SERVICE_TYPES = ("inline", "file", "url")
SERVICE_METHODS = ("POST", "PATCH")
HASH_POLICIES = ("warn", "skip", "require")

COMMAND_PHASES = ("pre_onboard_enabled", "bigip_ready_enabled", "post_onboard_enabled")

DEFAULT_READY_CHECK = RetryPolicy(max_retries=120, retry_interval=5000)

ENV_PREFIX = "RUNTIME_INIT_"
DEFAULT_LOG_FILE = Path("/var/log/cloud/runtime-init.log")
DEFAULT_SCRATCH_DIR = Path("/var/tmp/runtime-init")
DEFAULT_STATE_FILE = Path("/var/lib/runtime-init/last_run.json")

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def _headers_to_dict(headers: Any) -> Dict[str, str]:
    """Accept headers as a mapping or a list of {name, value} items."""
    if not headers:
        return {}
    if isinstance(headers, Mapping):
        return {str(k): str(v) for k, v in headers.items()}
    if isinstance(headers, list):
        try:
            return {str(h["name"]): str(h["value"]) for h in headers}
        except (KeyError, TypeError):
            raise ConfigError(f"Invalid headers (expected name/value items): {headers}")
    raise ConfigError(f"Invalid headers: {headers}")


def _optional_int(data: Mapping[str, Any], key: str) -> Optional[int]:
    value = data.get(key)
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ConfigError(f"'{key}' must be an integer, got: {value!r}")


class RuntimeParameter:
    """A named value resolved once at the start of a run."""

    def __init__(self, data: Dict[str, Any]):
        self.name = data.get("name")
        self.type = data.get("type")
        self.value = data.get("value")
        self.query = data.get("query")
        self.headers = _headers_to_dict(data.get("headers"))
        self.verify_tls = bool(data.get("verifyTls", True))
        self.max_retries = _optional_int(data, "maxRetries")
        self.retry_interval = _optional_int(data, "retryInterval")

        if self.type == "secret":
            self.provider = dict(data.get("secretProvider") or {})
        elif self.type == "metadata":
            self.provider = dict(data.get("metadataProvider") or {})
        else:
            self.provider = {}

    @property
    def environment(self) -> Optional[str]:
        """Cloud provider environment for secret/metadata parameters."""
        return self.provider.get("environment")

    def validate(self) -> None:
        if not self.name or not _IDENTIFIER.match(str(self.name)):
            raise ConfigError(f"Runtime parameter name must be an identifier, got: {self.name!r}")
        if self.type not in PARAMETER_TYPES:
            raise ConfigError(
                f"Runtime parameter {self.name}: type must be one of {PARAMETER_TYPES}, got: {self.type!r}"
            )
        if self.type in ("url", "static") and self.value is None:
            raise ConfigError(f"Runtime parameter {self.name}: 'value' is required for type {self.type}")
        if self.type in ("secret", "metadata") and not self.environment:
            block = "secretProvider" if self.type == "secret" else "metadataProvider"
            raise ConfigError(f"Runtime parameter {self.name}: '{block}.environment' is required")

    def __repr__(self) -> str:
        return f"RuntimeParameter(name={self.name}, type={self.type})"


class OnboardOperation:
    """One step of a command phase."""

    def __init__(self, data: Dict[str, Any]):
        self.name = data.get("name")
        self.type = data.get("type")
        commands = data.get("commands") or []
        if isinstance(commands, str):
            commands = [commands]
        self.commands: Tuple[str, ...] = tuple(str(c) for c in commands)
        self.max_retries = _optional_int(data, "maxRetries")
        self.retry_interval = _optional_int(data, "retryInterval")
        self.continue_on_error = bool(data.get("continueOnError", False))
        self.verify_tls = bool(data.get("verifyTls", True))

    def retry_policy(self, default: RetryPolicy) -> RetryPolicy:
        return default.override(self.max_retries, self.retry_interval)

    def validate(self) -> None:
        if not self.name:
            raise ConfigError("Operation is missing 'name'")
        if self.type not in OPERATION_TYPES:
            raise ConfigError(
                f"Operation {self.name}: type must be one of {OPERATION_TYPES}, got: {self.type!r}"
            )
        if not self.commands:
            raise ConfigError(f"Operation {self.name}: 'commands' must not be empty")

    def __repr__(self) -> str:
        return f"OnboardOperation(name={self.name}, type={self.type}, commands={len(self.commands)})"


class ExtensionInstallSpec:
    """An extension package to download, verify and install."""

    def __init__(self, data: Dict[str, Any]):
        self.extension_type = data.get("extensionType")
        self.extension_version = data.get("extensionVersion")
        self.extension_build = str(data.get("extensionBuild", "1"))
        self.extension_url = data.get("extensionUrl")
        self.extension_hash = data.get("extensionHash")
        self.extension_verification_endpoint = data.get("extensionVerificationEndpoint")

    @property
    def name(self) -> str:
        if self.extension_version:
            return f"{self.extension_type}-{self.extension_version}"
        return str(self.extension_type)

    @property
    def package_url(self) -> str:
        if self.extension_url:
            return self.extension_url
        metadata = get_extension(self.extension_type)
        return metadata.download_url(str(self.extension_version), self.extension_build)

    @property
    def verification_endpoint(self) -> str:
        if self.extension_verification_endpoint:
            return self.extension_verification_endpoint
        return get_extension(self.extension_type).info_endpoint

    def validate(self) -> None:
        if self.extension_type not in EXTENSIONS:
            raise ConfigError(
                f"Install operation: unknown extensionType {self.extension_type!r}. "
                f"Known: {sorted(EXTENSIONS)}"
            )
        if not self.extension_url and not self.extension_version:
            raise ConfigError(
                f"Install operation {self.extension_type}: one of extensionUrl or extensionVersion is required"
            )

    def __repr__(self) -> str:
        return f"ExtensionInstallSpec(type={self.extension_type}, version={self.extension_version})"


class ServiceOperation:
    """A declaration to send to an installed extension."""

    def __init__(self, data: Dict[str, Any]):
        self.extension_type = data.get("extensionType")
        self.type = data.get("type")
        self.value = data.get("value")
        self.method = str(data.get("method", "POST")).upper()
        self.endpoint = data.get("endpoint")

    @property
    def name(self) -> str:
        return str(self.extension_type)

    @property
    def declare_endpoint(self) -> str:
        if self.endpoint:
            return self.endpoint
        return get_extension(self.extension_type).declare_endpoint

    def validate(self) -> None:
        if self.extension_type not in EXTENSIONS and not self.endpoint:
            raise ConfigError(
                f"Service operation: unknown extensionType {self.extension_type!r} and no 'endpoint'"
            )
        if self.type not in SERVICE_TYPES:
            raise ConfigError(
                f"Service operation {self.name}: type must be one of {SERVICE_TYPES}, got: {self.type!r}"
            )
        if self.value is None:
            raise ConfigError(f"Service operation {self.name}: 'value' is required")
        if self.method not in SERVICE_METHODS:
            raise ConfigError(
                f"Service operation {self.name}: method must be one of {SERVICE_METHODS}, got: {self.method}"
            )

    def __repr__(self) -> str:
        return f"ServiceOperation(type={self.extension_type}, source={self.type})"


class Controls:
    """Run-wide knobs from the document's `controls` section."""

    def __init__(self, data: Optional[Dict[str, Any]] = None):
        data = data or {}
        self.log_level = data.get("logLevel")
        self.log_filename = data.get("logFilename")
        self.extension_hash_policy = str(data.get("extensionHashPolicy", "warn")).lower()
        try:
            self.retry = RetryPolicy.from_dict(data.get("retry"))
            self.ready_check = RetryPolicy.from_dict(data.get("readyCheck"), DEFAULT_READY_CHECK)
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid retry settings in controls: {e}")

    def validate(self) -> None:
        if self.extension_hash_policy not in HASH_POLICIES:
            raise ConfigError(
                f"controls.extensionHashPolicy must be one of {HASH_POLICIES}, "
                f"got: {self.extension_hash_policy}"
            )


class OnboardConfig:
    """Complete declarative onboarding document."""

    def __init__(self, raw_config: Dict[str, Any], config_path: Optional[Path] = None):
        if not isinstance(raw_config, dict):
            raise ConfigError("Configuration document must be a mapping")

        self.config_path = config_path
        self.raw_config = raw_config

        self.controls = Controls(raw_config.get("controls"))

        self.runtime_parameters: Tuple[RuntimeParameter, ...] = tuple(
            RuntimeParameter(p) for p in raw_config.get("runtime_parameters") or []
        )

        self.phases: Dict[str, Tuple[OnboardOperation, ...]] = {
            phase: tuple(OnboardOperation(op) for op in raw_config.get(phase) or [])
            for phase in COMMAND_PHASES
        }

        packages = raw_config.get("extension_packages") or {}
        self.install_operations: Tuple[ExtensionInstallSpec, ...] = tuple(
            ExtensionInstallSpec(op) for op in packages.get("install_operations") or []
        )

        services = raw_config.get("extension_services") or {}
        self.service_operations: Tuple[ServiceOperation, ...] = tuple(
            ServiceOperation(op) for op in services.get("service_operations") or []
        )

    @property
    def pre_onboard_enabled(self) -> Tuple[OnboardOperation, ...]:
        return self.phases["pre_onboard_enabled"]

    @property
    def bigip_ready_enabled(self) -> Tuple[OnboardOperation, ...]:
        return self.phases["bigip_ready_enabled"]

    @property
    def post_onboard_enabled(self) -> Tuple[OnboardOperation, ...]:
        return self.phases["post_onboard_enabled"]

    def validate(self) -> None:
        """
        Validate the whole document.

        Raises:
            ConfigError: On the first invalid entry
        """
        self.controls.validate()

        seen: set = set()
        for parameter in self.runtime_parameters:
            parameter.validate()
            if parameter.name in seen:
                raise ConfigError(f"Duplicate runtime parameter name: {parameter.name}")
            seen.add(parameter.name)

        for phase, operations in self.phases.items():
            for operation in operations:
                try:
                    operation.validate()
                except ConfigError as e:
                    raise ConfigError(f"{phase}: {e}")

        for spec in self.install_operations:
            spec.validate()

        for operation in self.service_operations:
            operation.validate()

    def summary(self) -> Dict[str, int]:
        """Count of entries per section."""
        counts = {"runtime_parameters": len(self.runtime_parameters)}
        counts.update({phase: len(ops) for phase, ops in self.phases.items()})
        counts["install_operations"] = len(self.install_operations)
        counts["service_operations"] = len(self.service_operations)
        return counts

    def __repr__(self) -> str:
        return f"OnboardConfig(path={self.config_path}, parameters={len(self.runtime_parameters)})"


def load_config(config_path: Path) -> OnboardConfig:
    """
    Load and validate an onboarding document from YAML or JSON.

    Args:
        config_path: Path to the document

    Returns:
        Validated OnboardConfig

    Raises:
        ConfigError: If the file is missing, unparsable or invalid
    """
    config_path = Path(config_path)
    if not config_path.exists():
        raise ConfigError(f"Configuration file not found: {config_path}")

    try:
        with open(config_path, "r") as f:
            raw = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML/JSON syntax in {config_path}: {e}")

    if not raw:
        raise ConfigError(f"Configuration file is empty: {config_path}")

    config = OnboardConfig(raw, config_path=config_path)
    config.validate()
    return config


def _env_bool(value: Optional[str], default: bool) -> bool:
    if value is None or value == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class RuntimeSettings:
    """
    Process settings, read once at startup.

    Environment variables use the RUNTIME_INIT_ prefix, e.g.
    RUNTIME_INIT_LOG_LEVEL or RUNTIME_INIT_MGMT_PORT.
    """

    log_level: Optional[str] = None
    log_file: Optional[Path] = None
    log_format: str = "structured"
    downloads_dir: Path = Path(DOWNLOADS_DIR)
    scratch_dir: Path = DEFAULT_SCRATCH_DIR
    state_file: Path = DEFAULT_STATE_FILE
    mgmt_host: str = "localhost"
    mgmt_port: int = 8100
    mgmt_protocol: str = "http"
    mgmt_user: str = "admin"
    mgmt_password: str = field(default="admin", repr=False)
    mgmt_verify_tls: bool = True
    request_timeout: float = 30.0

    @classmethod
    def from_env(
        cls,
        environ: Optional[Mapping[str, str]] = None,
        env_file: Optional[Path] = None,
    ) -> "RuntimeSettings":
        """
        Build settings from environment variables.

        Args:
            environ: Environment mapping (defaults to os.environ)
            env_file: Optional dotenv file; real environment values win

        Returns:
            RuntimeSettings
        """
        env: Dict[str, Optional[str]] = {}
        source = environ if environ is not None else os.environ
        env_file = env_file or source.get(f"{ENV_PREFIX}ENV_FILE")
        if env_file:
            if not Path(env_file).exists():
                raise ConfigError(f"Env file not found: {env_file}")
            env.update(dotenv_values(env_file))
        env.update(source)

        def get(name: str) -> Optional[str]:
            value = env.get(f"{ENV_PREFIX}{name}")
            return value if value not in (None, "") else None

        defaults = cls()
        try:
            return cls(
                log_level=get("LOG_LEVEL"),
                log_file=Path(get("LOG_FILENAME")) if get("LOG_FILENAME") else None,
                log_format=get("LOG_FORMAT") or defaults.log_format,
                downloads_dir=Path(get("DOWNLOADS_DIR") or defaults.downloads_dir),
                scratch_dir=Path(get("SCRATCH_DIR") or defaults.scratch_dir),
                state_file=Path(get("STATE_FILE") or defaults.state_file),
                mgmt_host=get("MGMT_HOST") or defaults.mgmt_host,
                mgmt_port=int(get("MGMT_PORT") or defaults.mgmt_port),
                mgmt_protocol=get("MGMT_PROTOCOL") or defaults.mgmt_protocol,
                mgmt_user=get("MGMT_USER") or defaults.mgmt_user,
                mgmt_password=get("MGMT_PASSWORD") or defaults.mgmt_password,
                mgmt_verify_tls=_env_bool(get("MGMT_VERIFY_TLS"), defaults.mgmt_verify_tls),
                request_timeout=float(get("REQUEST_TIMEOUT") or defaults.request_timeout),
            )
        except ValueError as e:
            raise ConfigError(f"Invalid {ENV_PREFIX}* environment value: {e}")

    def effective_log_level(self, controls: Optional[Controls] = None) -> str:
        """Environment first, then the document's controls, then INFO."""
        level = self.log_level or (controls.log_level if controls else None) or "INFO"
        return str(level).upper()

    def effective_log_file(self, controls: Optional[Controls] = None) -> Path:
        """Environment first, then the document's controls, then the default path."""
        if self.log_file:
            return self.log_file
        if controls and controls.log_filename:
            return Path(controls.log_filename)
        return DEFAULT_LOG_FILE
