from .dialog import Dialog, TuiDialog
from .models import InstallConfiguration
from .wizard import ConfigurationWizard, DeviceRequirement, WizardState

__all__ = [
    "ConfigurationWizard",
    "DeviceRequirement",
    "Dialog",
    "InstallConfiguration",
    "TuiDialog",
    "WizardState",
]
