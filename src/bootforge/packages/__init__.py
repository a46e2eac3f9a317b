"""Package management for bootforge.

This module handles toolchain selection, sysroot assembly, source downloads,
the build artifact cache and the build metrics log.
"""

from .cache import BuildCache, CacheError
from .downloader import (
    ChecksumError,
    DownloadError,
    ExtractionError,
    PackageDownloader,
    SourceFetchError,
    SourcePackage,
    SourceProvider,
)
from .metrics import BuildMetrics, format_duration
from .platform_utils import PlatformDetector, PlatformError
from .sysroot import Sysroot, SysrootBuilder, SysrootError
from .toolchain import Toolchain, ToolchainMissingError, ToolchainSelector

__all__ = [
    "BuildCache",
    "CacheError",
    "PackageDownloader",
    "SourceProvider",
    "SourcePackage",
    "DownloadError",
    "ChecksumError",
    "ExtractionError",
    "SourceFetchError",
    "BuildMetrics",
    "format_duration",
    "PlatformDetector",
    "PlatformError",
    "Sysroot",
    "SysrootBuilder",
    "SysrootError",
    "Toolchain",
    "ToolchainMissingError",
    "ToolchainSelector",
]
