from .phase_01_preflight import PreflightPhase
from .phase_01b_configuration import ConfigurationPhase
from .phase_02_device_selection import DeviceSelectionPhase
from .phase_03_disk_preparation import DiskPreparationPhase
from .phase_04_encryption import EncryptionPhase
from .phase_05_filesystem import FilesystemPhase
from .phase_06_base_install import BaseInstallPhase
from .phase_06b_software_manifest import SoftwareManifestPhase
from .phase_07_mount_configuration import MountConfigurationPhase
from .phase_08_boot_configuration import BootConfigurationPhase
from .phase_09_system_configuration import SystemConfigurationPhase
from .phase_10_user_setup import UserSetupPhase
from .phase_11_hardening import HardeningPhase
from .phase_12_snapshot_automation import SnapshotAutomationPhase
from .phase_13_verification import VerificationPhase


def build_phases():
    return [
        PreflightPhase(),
        ConfigurationPhase(),
        DeviceSelectionPhase(),
        DiskPreparationPhase(),
        EncryptionPhase(),
        FilesystemPhase(),
        BaseInstallPhase(),
        SoftwareManifestPhase(),
        MountConfigurationPhase(),
        BootConfigurationPhase(),
        SystemConfigurationPhase(),
        UserSetupPhase(),
        HardeningPhase(),
        SnapshotAutomationPhase(),
        VerificationPhase(),
    ]


__all__ = [
    "build_phases",
    "PreflightPhase",
    "ConfigurationPhase",
    "DeviceSelectionPhase",
    "DiskPreparationPhase",
    "EncryptionPhase",
    "FilesystemPhase",
    "BaseInstallPhase",
    "SoftwareManifestPhase",
    "MountConfigurationPhase",
    "BootConfigurationPhase",
    "SystemConfigurationPhase",
    "UserSetupPhase",
    "HardeningPhase",
    "SnapshotAutomationPhase",
    "VerificationPhase",
]
