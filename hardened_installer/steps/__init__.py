from .step_05_preflight import PreflightStep
from .step_10_partition_disk import PartitionDiskStep
from .step_15_setup_luks import SetupLuksStep
from .step_20_filesystems import FilesystemsStep
from .step_30_bootstrap_rootfs import BootstrapRootfsStep
from .step_35_stage_artifacts import StageArtifactsStep
from .step_40_configure_system import ConfigureSystemStep
from .step_50_install_packages import InstallPackagesStep
from .step_55_desktop import DesktopStep
from .step_60_services import ServicesStep
from .step_65_privacy import PrivacyStep
from .step_70_fstab_crypttab import FstabCrypttabStep
from .step_75_sysctl import SysctlStep
from .step_80_bootloader import BootloaderStep
from .step_85_accounts import AccountsStep
from .step_90_finalize import FinalizeStep

__all__ = [
    "PreflightStep",
    "PartitionDiskStep",
    "SetupLuksStep",
    "FilesystemsStep",
    "BootstrapRootfsStep",
    "StageArtifactsStep",
    "ConfigureSystemStep",
    "InstallPackagesStep",
    "DesktopStep",
    "ServicesStep",
    "PrivacyStep",
    "FstabCrypttabStep",
    "SysctlStep",
    "BootloaderStep",
    "AccountsStep",
    "FinalizeStep",
]
