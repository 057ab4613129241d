from runtime_init.stages.base import OnboardContext, Stage, StageResult
from runtime_init.stages.commands import CommandStage
from runtime_init.stages.extensions import ExtensionInstallStage, ExtensionServiceStage
from runtime_init.stages.parameters import ParameterStage
from runtime_init.stages.readiness import ReadinessStage

__all__ = [
    "OnboardContext",
    "Stage",
    "StageResult",
    "CommandStage",
    "ExtensionInstallStage",
    "ExtensionServiceStage",
    "ParameterStage",
    "ReadinessStage",
]
