"""PHP-FPM pool generation, host-global ini ownership, and FPM control."""

from boxctl.infrastructure.php.fpm import FPMController
from boxctl.infrastructure.php.pool import PoolGenerator
from boxctl.infrastructure.php.system_ini import ClaimResult, SystemIniManager, SystemIniOwner

__all__ = [
    "ClaimResult",
    "FPMController",
    "PoolGenerator",
    "SystemIniManager",
    "SystemIniOwner",
]
