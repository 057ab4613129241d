"""
runtime-init - Day-0 onboarding engine for BIG-IP appliances

Reads a declarative onboarding document, resolves runtime parameters from
cloud metadata, secret stores and URLs, then drives the device through
ordered phases: commands, extension installs and extension declarations.
"""

__version__ = "0.1.0"


__all__ = ["OnboardConfig", "RuntimeSettings", "load_config", "Onboarder", "PipelineResult"]

from .config import OnboardConfig, RuntimeSettings, load_config
from .pipeline import Onboarder, PipelineResult
