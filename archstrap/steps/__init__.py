from .step_01_configure import ConfigureStep
from .step_02_partition import PartitionStep
from .step_03_encryption import EncryptionStep
from .step_04_filesystem import FilesystemStep
from .step_05_mount import MountStep
from .step_06_install_base import InstallBaseStep
from .step_07_fstab import FstabStep
from .step_08_swapfile import SwapfileStep
from .step_09_system import SystemStep
from .step_10_users import UsersStep
from .step_11_hardware import HardwareStep
from .step_12_quirks import QuirksStep
from .step_13_boot import BootStep
from .step_14_finalize import FinalizeStep

__all__ = [
    "ConfigureStep",
    "PartitionStep",
    "EncryptionStep",
    "FilesystemStep",
    "MountStep",
    "InstallBaseStep",
    "FstabStep",
    "SwapfileStep",
    "SystemStep",
    "UsersStep",
    "HardwareStep",
    "QuirksStep",
    "BootStep",
    "FinalizeStep",
]
