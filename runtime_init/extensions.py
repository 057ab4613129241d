"""
Catalogue of installable extensions.

Maps an extensionType (do, as3, ts, cf, fast) to its release location and
the management API endpoints it serves once installed.
"""

from dataclasses import dataclass

from runtime_init.errors import ConfigError

RELEASE_URL = "https://github.com/F5Networks/{repository}/releases/download/v{version}/{package}"

PACKAGE_MANAGEMENT_ENDPOINT = "/mgmt/shared/iapp/package-management-tasks"
DOWNLOADS_DIR = "/var/config/rest/downloads"


@dataclass(frozen=True)
class ExtensionMetadata:
    extension_type: str
    repository: str
    package_prefix: str
    info_endpoint: str
    declare_endpoint: str

    def package_name(self, version: str, build: str = "1") -> str:
        return f"{self.package_prefix}-{version}-{build}.noarch.rpm"

    def download_url(self, version: str, build: str = "1") -> str:
        return RELEASE_URL.format(
            repository=self.repository,
            version=version,
            package=self.package_name(version, build),
        )


EXTENSIONS: dict[str, ExtensionMetadata] = {
    "do": ExtensionMetadata(
        extension_type="do",
        repository="f5-declarative-onboarding",
        package_prefix="f5-declarative-onboarding",
        info_endpoint="/mgmt/shared/declarative-onboarding/info",
        declare_endpoint="/mgmt/shared/declarative-onboarding",
    ),
    "as3": ExtensionMetadata(
        extension_type="as3",
        repository="f5-appsvcs-extension",
        package_prefix="f5-appsvcs",
        info_endpoint="/mgmt/shared/appsvcs/info",
        declare_endpoint="/mgmt/shared/appsvcs/declare",
    ),
    "ts": ExtensionMetadata(
        extension_type="ts",
        repository="f5-telemetry-streaming",
        package_prefix="f5-telemetry",
        info_endpoint="/mgmt/shared/telemetry/info",
        declare_endpoint="/mgmt/shared/telemetry/declare",
    ),
    "cf": ExtensionMetadata(
        extension_type="cf",
        repository="f5-cloud-failover-extension",
        package_prefix="f5-cloud-failover",
        info_endpoint="/mgmt/shared/cloud-failover/info",
        declare_endpoint="/mgmt/shared/cloud-failover/declare",
    ),
    "fast": ExtensionMetadata(
        extension_type="fast",
        repository="f5-appsvcs-templates",
        package_prefix="f5-appsvcs-templates",
        info_endpoint="/mgmt/shared/fast/info",
        declare_endpoint="/mgmt/shared/fast/applications",
    ),
}


def get_extension(extension_type: str) -> ExtensionMetadata:
    """
    Look up an extension by type.

    Raises:
        ConfigError: If the type is not in the catalogue
    """
    try:
        return EXTENSIONS[extension_type]
    except KeyError:
        raise ConfigError(
            f"Unknown extensionType: {extension_type}. Known: {sorted(EXTENSIONS)}"
        ) from None
