"""Configuration for bootforge.

This module provides the architecture/build-mode tables and the
build-config.json loader.
"""

from .architectures import (
    ARCH_SPECS,
    REQUIRED_SYSROOT_LIBS,
    Architecture,
    ArchSpec,
    BuildMode,
    ConfigError,
    find_by_linux_arch,
    get_arch_spec,
    resolve_architecture,
    resolve_build_mode,
    supported_architectures,
    supported_build_modes,
)
from .build_config import (
    AndroidNativeOptions,
    BuildConfig,
    LinuxNativeOptions,
    PackageSpec,
    StaticOptions,
    ValidationReport,
    load_config,
)

__all__ = [
    "ARCH_SPECS",
    "REQUIRED_SYSROOT_LIBS",
    "Architecture",
    "ArchSpec",
    "BuildMode",
    "ConfigError",
    "find_by_linux_arch",
    "get_arch_spec",
    "resolve_architecture",
    "resolve_build_mode",
    "supported_architectures",
    "supported_build_modes",
    "AndroidNativeOptions",
    "BuildConfig",
    "LinuxNativeOptions",
    "PackageSpec",
    "StaticOptions",
    "ValidationReport",
    "load_config",
]
