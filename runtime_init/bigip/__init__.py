from runtime_init.bigip.management_client import (
    ManagementClient,
    ReadinessState,
    READY_ENDPOINT,
)

__all__ = ["ManagementClient", "ReadinessState", "READY_ENDPOINT"]
