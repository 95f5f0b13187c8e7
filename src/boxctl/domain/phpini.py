"""PHP ini directive classification: pool scope vs host-global scope.

PHP-FPM pools may override most directives with ``php_value`` /
``php_admin_value``. ``PHP_INI_SYSTEM`` directives cannot be set per pool;
they only take effect from an ini file in the runtime's scan directory, which
is shared by every project on that PHP version. :func:`split_settings` routes
each override to the right place.
"""

from __future__ import annotations

import re
from collections.abc import Mapping

from boxctl.domain.errors import InvalidIniValueError

SYSTEM_DIRECTIVES: frozenset[str] = frozenset(
    {
        # OPcache shared memory and process-level settings
        "opcache.enable_cli",
        "opcache.memory_consumption",
        "opcache.interned_strings_buffer",
        "opcache.max_accelerated_files",
        "opcache.max_wasted_percentage",
        "opcache.force_restart_timeout",
        "opcache.log_verbosity_level",
        "opcache.preferred_memory_model",
        "opcache.protect_memory",
        "opcache.mmap_base",
        "opcache.restrict_api",
        "opcache.file_update_protection",
        "opcache.huge_code_pages",
        "opcache.lockfile_path",
        "opcache.opt_debug_level",
        "opcache.file_cache",
        "opcache.file_cache_only",
        "opcache.file_cache_consistency_checks",
        "opcache.file_cache_fallback",
        # Preloading
        "opcache.preload",
        "opcache.preload_user",
        # JIT
        "opcache.jit",
        "opcache.jit_buffer_size",
        "opcache.jit_debug",
        "opcache.jit_bisect_limit",
        "opcache.jit_prof_threshold",
        "opcache.jit_max_root_traces",
        "opcache.jit_max_side_traces",
        "opcache.jit_max_exit_counters",
        "opcache.jit_hot_loop",
        "opcache.jit_hot_func",
        "opcache.jit_hot_return",
        "opcache.jit_hot_side_exit",
        "opcache.jit_blacklist_root_trace",
        "opcache.jit_blacklist_side_trace",
        "opcache.jit_max_loop_unrolls",
        "opcache.jit_max_recursive_calls",
        "opcache.jit_max_recursive_returns",
        "opcache.jit_max_polymorphic_calls",
    }
)

# Pool-scope defaults applied before project overrides.
POOL_DEFAULTS: dict[str, str] = {
    "memory_limit": "756M",
    "max_execution_time": "18000",
    "max_input_time": "600",
    "max_input_vars": "10000",
    "post_max_size": "64M",
    "upload_max_filesize": "64M",
    "session.gc_maxlifetime": "86400",
    "opcache.enable": "1",
    "opcache.validate_timestamps": "1",
    "realpath_cache_size": "10M",
    "realpath_cache_ttl": "7200",
}

# Written as php_admin_value so application code cannot ini_set() them away.
_ADMIN_PREFIXES = ("opcache.", "realpath_cache", "error_log", "log_errors", "open_basedir")

_SIZE_DIRECTIVES = frozenset(
    {
        "memory_limit",
        "post_max_size",
        "upload_max_filesize",
        "realpath_cache_size",
        "opcache.jit_buffer_size",
    }
)
_INT_DIRECTIVES = frozenset(
    {
        "max_execution_time",
        "max_input_time",
        "max_input_vars",
        "session.gc_maxlifetime",
        "realpath_cache_ttl",
        "opcache.memory_consumption",
        "opcache.interned_strings_buffer",
        "opcache.max_accelerated_files",
        "opcache.max_wasted_percentage",
    }
)

_KEY_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_.\-]*$")
_SIZE_RE = re.compile(r"^-?\d+[KkMmGg]?$")
_INT_RE = re.compile(r"^-?\d+$")
_CONTROL_RE = re.compile(r"[\x00-\x1f\x7f]")


def has_control_chars(value: str) -> bool:
    """True when *value* would break out of its line in a generated file."""
    return _CONTROL_RE.search(value) is not None


def is_system_setting(key: str) -> bool:
    return key in SYSTEM_DIRECTIVES


def is_admin_setting(key: str) -> bool:
    return key.startswith(_ADMIN_PREFIXES)


def validate_ini_value(key: str, value: str) -> None:
    """Reject overrides that would corrupt or silently break a generated file.

    Raises:
        InvalidIniValueError: Describing why *key*/*value* is malformed.
    """
    if not _KEY_RE.match(key):
        raise InvalidIniValueError(key, value, "invalid directive name")
    if has_control_chars(value):
        raise InvalidIniValueError(key, value, "control characters are not allowed")
    if value.count('"') % 2:
        raise InvalidIniValueError(key, value, "unbalanced double quote")
    if key in _SIZE_DIRECTIVES and not _SIZE_RE.match(value):
        raise InvalidIniValueError(key, value, "expected a size such as 512M or -1")
    if key in _INT_DIRECTIVES and not _INT_RE.match(value):
        raise InvalidIniValueError(key, value, "expected an integer")


def split_settings(overrides: Mapping[str, str]) -> tuple[dict[str, str], dict[str, str]]:
    """Split overrides into ``(system, pool)`` dicts, validating each value."""
    system: dict[str, str] = {}
    pool: dict[str, str] = {}
    for key, value in overrides.items():
        validate_ini_value(key, value)
        if is_system_setting(key):
            system[key] = value
        else:
            pool[key] = value
    return system, pool


def merge_pool_settings(pool_overrides: Mapping[str, str]) -> dict[str, str]:
    """Built-in pool defaults with project overrides applied, sorted by key."""
    merged = {**POOL_DEFAULTS, **pool_overrides}
    return dict(sorted(merged.items()))


def diff_settings(previous: Mapping[str, str], current: Mapping[str, str]) -> list[str]:
    """Describe how *current* replaces *previous* (for ownership warnings).

    Examples:
        >>> diff_settings({"opcache.jit": "off"}, {"opcache.jit": "tracing"})
        ['opcache.jit: off -> tracing']
        >>> diff_settings({"opcache.preload": "/a.php"}, {})
        ['opcache.preload: /a.php -> (removed)']
    """
    changes: list[str] = []
    for key in sorted(set(previous) | set(current)):
        if key in previous and key in current:
            if previous[key] != current[key]:
                changes.append(f"{key}: {previous[key]} -> {current[key]}")
        elif key in previous:
            changes.append(f"{key}: {previous[key]} -> (removed)")
        else:
            changes.append(f"{key}: (new) {current[key]}")
    return changes
