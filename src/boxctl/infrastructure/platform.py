"""Host platform detection and per-platform paths.

Only the facts the reconciler needs: how PHP-FPM and nginx are controlled,
where PHP scans for extra ini files, and how to install mkcert.
"""

from __future__ import annotations

import platform as _platform
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path


class OSType(StrEnum):
    DARWIN = "darwin"
    LINUX = "linux"
    UNKNOWN = "unknown"


class Distro(StrEnum):
    DEBIAN = "debian"
    FEDORA = "fedora"
    ARCH = "arch"
    UNKNOWN = "unknown"


_FEDORA_IDS = {"fedora", "rhel", "centos", "rocky", "almalinux"}
_DEBIAN_IDS = {"debian", "ubuntu", "linuxmint", "pop"}
_ARCH_IDS = {"arch", "manjaro", "endeavouros", "garuda", "artix"}


def parse_os_release(content: str) -> dict[str, str]:
    """Parse ``/etc/os-release`` into a dict.

    Examples:
        >>> parse_os_release('ID=ubuntu\\nID_LIKE="debian"\\n# comment')
        {'ID': 'ubuntu', 'ID_LIKE': 'debian'}
    """
    result: dict[str, str] = {}
    for line in content.splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        result[key] = value.strip("\"'")
    return result


def distro_family(os_release: dict[str, str]) -> Distro:
    os_id = os_release.get("ID", "").lower()
    id_like = os_release.get("ID_LIKE", "").lower()
    if os_id in _FEDORA_IDS or "fedora" in id_like or "rhel" in id_like:
        return Distro.FEDORA
    if os_id in _DEBIAN_IDS or "debian" in id_like or "ubuntu" in id_like:
        return Distro.DEBIAN
    if os_id in _ARCH_IDS or "arch" in id_like:
        return Distro.ARCH
    return Distro.UNKNOWN


@dataclass(frozen=True)
class Platform:
    os_type: OSType
    distro: Distro = Distro.UNKNOWN
    apple_silicon: bool = False

    @classmethod
    def detect(cls) -> Platform:
        system = _platform.system().lower()
        if system == "darwin":
            return cls(OSType.DARWIN, apple_silicon=_platform.machine() == "arm64")
        if system == "linux":
            os_release = Path("/etc/os-release")
            content = os_release.read_text(encoding="utf-8") if os_release.is_file() else ""
            return cls(OSType.LINUX, distro=distro_family(parse_os_release(content)))
        return cls(OSType.UNKNOWN)

    @property
    def brew_prefix(self) -> Path:
        return Path("/opt/homebrew" if self.apple_silicon else "/usr/local")

    def php_scan_dir(self, php_version: str) -> Path | None:
        """Directory PHP scans for additional ini files, or None if unknown."""
        if self.os_type is OSType.DARWIN:
            return self.brew_prefix / "etc" / "php" / php_version / "conf.d"
        if self.distro is Distro.FEDORA:
            return Path(f"/etc/opt/remi/php{php_version.replace('.', '')}/php.d")
        if self.distro is Distro.DEBIAN:
            return Path(f"/etc/php/{php_version}/fpm/conf.d")
        if self.distro is Distro.ARCH:
            return Path("/etc/php/conf.d")
        return None

    def fpm_service(self, php_version: str) -> str:
        if self.os_type is OSType.DARWIN:
            return f"php@{php_version}"
        if self.distro is Distro.FEDORA:
            return f"php{php_version.replace('.', '')}-php-fpm"
        if self.distro is Distro.ARCH:
            return "php-fpm"
        return f"php{php_version}-fpm"

    def service_command(self, action: str, service: str) -> tuple[list[str], bool]:
        """``(argv, privileged)`` to apply *action* to a system service."""
        if self.os_type is OSType.DARWIN:
            # brew services has no reload verb.
            verb = "restart" if action == "reload" else action
            return ["brew", "services", verb, service], False
        return ["systemctl", action, service], True

    def service_status_command(self, service: str) -> list[str]:
        if self.os_type is OSType.DARWIN:
            return ["pgrep", "-f", service.replace("@", ".*")]
        return ["systemctl", "is-active", "--quiet", service]

    @property
    def mkcert_install_hint(self) -> str:
        if self.os_type is OSType.DARWIN:
            return "brew install mkcert nss"
        if self.distro is Distro.FEDORA:
            return "sudo dnf install -y mkcert nss-tools"
        if self.distro is Distro.ARCH:
            return "sudo pacman -S mkcert nss"
        return "sudo apt install -y mkcert libnss3-tools"
