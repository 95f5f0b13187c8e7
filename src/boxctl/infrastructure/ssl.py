"""Local TLS certificates via ``mkcert``.

boxctl owns only the directory layout and the invocation; PKI correctness is
mkcert's job. Certificates are keyed by domain and issued once.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from boxctl.domain.errors import ExternalToolError
from boxctl.infrastructure.platform import Platform
from boxctl.infrastructure.runner import CommandRunner

logger = logging.getLogger(__name__)

COMPONENT = "ssl"


@dataclass(frozen=True)
class CertPaths:
    cert: Path
    key: Path

    def exist(self) -> bool:
        return self.cert.is_file() and self.key.is_file()


class SslManager:
    def __init__(self, state_dir: Path, runner: CommandRunner, platform: Platform) -> None:
        self.state_dir = state_dir
        self.runner = runner
        self.platform = platform

    @property
    def certs_dir(self) -> Path:
        return self.state_dir / "certs"

    def cert_paths(self, domain: str) -> CertPaths:
        base = self.certs_dir / domain
        return CertPaths(cert=base / "cert.pem", key=base / "key.pem")

    def _require_mkcert(self) -> None:
        if self.runner.which("mkcert") is None:
            raise ExternalToolError(
                COMPONENT,
                f"mkcert is not installed (install with: {self.platform.mkcert_install_hint})",
                command=["mkcert"],
            )

    def ca_root(self) -> Path:
        return Path(self.runner.output(COMPONENT, ["mkcert", "-CAROOT"]).strip())

    def ensure_ca(self) -> bool:
        """Install the local CA unless it already exists. True if installed now."""
        self._require_mkcert()
        if (self.ca_root() / "rootCA.pem").is_file():
            return False
        self.runner.run(COMPONENT, ["mkcert", "-install"])
        return True

    def ensure_certificate(self, domain: str) -> tuple[CertPaths, bool]:
        """Issue a leaf certificate for *domain* if absent.

        Returns ``(paths, issued)``; *issued* is False when reused.
        """
        paths = self.cert_paths(domain)
        if paths.exist():
            return paths, False
        self._require_mkcert()
        paths.cert.parent.mkdir(parents=True, exist_ok=True)
        self.runner.run(
            COMPONENT,
            ["mkcert", "-cert-file", str(paths.cert), "-key-file", str(paths.key), domain],
        )
        logger.debug("Issued certificate for %s", domain)
        return paths, True
