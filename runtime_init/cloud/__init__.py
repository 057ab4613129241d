"""
runtime_init.cloud - Cloud provider capability interface.

CloudClient defines get_secret/get_metadata; CloudClientRegistry selects a
client by provider environment name.
"""

from runtime_init.cloud.base import CloudClient
from runtime_init.cloud.registry import CloudClientRegistry, ENTRY_POINT_GROUP

__all__ = [
    "CloudClient",
    "CloudClientRegistry",
    "ENTRY_POINT_GROUP",
]
