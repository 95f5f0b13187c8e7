"""Per-project PHP-FPM pool files.

Pools live under ``<state>/php/pools/<php>/<project>.conf``; each PHP
version's FPM master includes its own directory via
:meth:`PoolGenerator.include_directive`.
"""

from __future__ import annotations

import getpass
import logging
from pathlib import Path

from boxctl.config.models import PhpConfig
from boxctl.domain.phpini import is_admin_setting, merge_pool_settings, split_settings
from boxctl.domain.project import ProjectConfig
from boxctl.infrastructure.templates import build_template_environment

logger = logging.getLogger(__name__)


def _current_user() -> str:
    try:
        return getpass.getuser()
    except OSError:
        return "www-data"


class PoolGenerator:
    def __init__(self, state_dir: Path, php: PhpConfig | None = None) -> None:
        self.state_dir = state_dir
        self.php = php or PhpConfig()
        self._env = build_template_environment("php", state_dir=state_dir)

    @property
    def pools_root(self) -> Path:
        return self.state_dir / "php" / "pools"

    @property
    def run_dir(self) -> Path:
        return self.state_dir / "run"

    def pools_dir(self, php_version: str) -> Path:
        return self.pools_root / php_version

    def pool_path(self, project: str, php_version: str) -> Path:
        return self.pools_dir(php_version) / f"{project}.conf"

    def socket_path(self, project: str, php_version: str) -> Path:
        return self.run_dir / f"{project}-php{php_version}.sock"

    def include_directive(self, php_version: str) -> str:
        return f"include={self.pools_dir(php_version)}/*.conf"

    def render(self, config: ProjectConfig) -> str:
        """Render the pool file for *config*.

        Host-global directives are left out; they belong in the system ini.

        Raises:
            InvalidIniValueError: If an override is malformed.
        """
        _, pool_overrides = split_settings(config.php_ini)
        settings = merge_pool_settings(pool_overrides)
        user = self.php.user or _current_user()
        group = self.php.group or user
        return self._env.get_template("pool.conf.j2").render(
            project=config.name,
            php_version=config.php,
            socket=self.socket_path(config.name, config.php),
            user=user,
            group=group,
            pm=self.php,
            log_dir=self.state_dir / "logs" / "php-fpm",
            values=[(k, v) for k, v in settings.items() if not is_admin_setting(k)],
            admin_values=[(k, v) for k, v in settings.items() if is_admin_setting(k)],
            env=sorted(config.env.items()),
        )

    def generate(self, config: ProjectConfig) -> Path:
        content = self.render(config)
        path = self.pool_path(config.name, config.php)
        path.parent.mkdir(parents=True, exist_ok=True)
        self.run_dir.mkdir(parents=True, exist_ok=True)
        (self.state_dir / "logs" / "php-fpm").mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
        logger.debug("Wrote pool %s", path)
        return path

    def find_pools(self, project: str) -> list[Path]:
        """Every pool file for *project*, across PHP versions."""
        if not self.pools_root.is_dir():
            return []
        return sorted(self.pools_root.glob(f"*/{project}.conf"))

    def remove(self, project: str, *, dry_run: bool = False) -> list[Path]:
        removed = self.find_pools(project)
        if not dry_run:
            for path in removed:
                path.unlink(missing_ok=True)
        return removed
