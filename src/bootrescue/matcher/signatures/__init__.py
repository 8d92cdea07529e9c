"""Signature catalog: every built-in boot-failure signature."""

from bootrescue.matcher.signatures.base import Signature
from bootrescue.matcher.signatures.boot_files import (
    BOOT001LoaderMissing,
    BOOT002LoaderTruncated,
    BOOT003KernelMissing,
    BOOT004HalMissing,
    BOOT005UefiBootManagerMissing,
    BOOT006BiosBootManagerMissing,
)
from bootrescue.matcher.signatures.bcd import (
    BCD001StoreMissing,
    BCD002StoreEmpty,
    BCD003NoOsLoader,
    BCD004DeviceBinding,
    BCD005DefaultDangling,
    BCD006BootSequencePending,
    BCD007SafeBootStuck,
)
from bootrescue.matcher.signatures.drivers import (
    DRV001StartOverrideTrap,
    DRV002StorageServiceDisabled,
    DRV003ZeroLengthDriver,
    DRV004DriverMissing,
)
from bootrescue.matcher.signatures.servicing import (
    SVC001PendingXml,
    SVC002PendingRenames,
    SVC003CbsRebootPending,
)
from bootrescue.matcher.signatures.platform import (
    ENC001VolumeLocked,
    ESP001NotFat,
    PWR001CorruptHibernationFile,
    PWR002HibernatedSession,
    SEC001LegacyLoaderUnderSecureBoot,
    SEC002BiosStoreUnderSecureBoot,
)
from bootrescue.matcher.signatures.system import (
    LOG001CrashDump,
    LOG002RepairRootCause,
    REG001SystemHiveMissing,
)

# Bumped whenever a signature is added, removed or changes its trigger
CATALOG_VERSION = "2024.3"

ALL_SIGNATURES: list[type[Signature]] = [
    BOOT001LoaderMissing,
    BOOT002LoaderTruncated,
    BOOT003KernelMissing,
    BOOT004HalMissing,
    BOOT005UefiBootManagerMissing,
    BOOT006BiosBootManagerMissing,
    BCD001StoreMissing,
    BCD002StoreEmpty,
    BCD003NoOsLoader,
    BCD004DeviceBinding,
    BCD005DefaultDangling,
    BCD006BootSequencePending,
    BCD007SafeBootStuck,
    DRV001StartOverrideTrap,
    DRV002StorageServiceDisabled,
    DRV003ZeroLengthDriver,
    DRV004DriverMissing,
    SVC001PendingXml,
    SVC002PendingRenames,
    SVC003CbsRebootPending,
    SEC001LegacyLoaderUnderSecureBoot,
    SEC002BiosStoreUnderSecureBoot,
    ENC001VolumeLocked,
    PWR001CorruptHibernationFile,
    PWR002HibernatedSession,
    ESP001NotFat,
    REG001SystemHiveMissing,
    LOG001CrashDump,
    LOG002RepairRootCause,
]

__all__ = ["ALL_SIGNATURES", "CATALOG_VERSION", "Signature"]
