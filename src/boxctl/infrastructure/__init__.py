"""Infrastructure layer — generated artifacts and external tools.

This layer talks to the filesystem and to external programs (docker, nginx,
php-fpm, mkcert, dnsmasq) through :mod:`boxctl.infrastructure.runner`.
It may import from domain, never from services, commands, or output.
"""
