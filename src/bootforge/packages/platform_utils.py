"""Platform Detection Utilities.

This module provides utilities for detecting the host architecture for
toolchain selection and sandbox emulation decisions.

Supported host architectures (Linux naming):
    - x86_64
    - aarch64
    - arm
    - i686
"""

import os
import platform
import sys
from typing import Optional


class PlatformError(Exception):
    """Raised when platform detection fails or platform is unsupported."""

    pass


class PlatformDetector:
    """Detects the host architecture in the same naming as ArchSpec.linux_arch."""

    @staticmethod
    def normalize_machine(machine: str) -> str:
        """Normalize a `uname -m` style machine string.

        Args:
            machine: Raw machine string (e.g. 'amd64', 'arm64', 'armv7l')

        Returns:
            Linux arch name ('x86_64', 'aarch64', 'arm', 'i686')

        Raises:
            PlatformError: If the machine type is not recognized
        """
        machine = machine.lower()

        if machine in ("x86_64", "amd64"):
            return "x86_64"
        elif machine in ("aarch64", "arm64"):
            return "aarch64"
        elif machine.startswith("arm"):
            return "arm"
        elif machine in ("i386", "i486", "i586", "i686", "x86"):
            return "i686"
        else:
            raise PlatformError(f"Unsupported host architecture: {machine}")

    @staticmethod
    def detect_host_arch(machine: Optional[str] = None) -> str:
        """Detect the host architecture.

        The BOOTFORGE_HOST_ARCH environment variable overrides detection.

        Args:
            machine: Optional machine string to normalize instead of platform.machine()

        Returns:
            Linux arch name of the host

        Raises:
            PlatformError: If the host architecture is unsupported
        """
        override = os.environ.get("BOOTFORGE_HOST_ARCH")
        if machine is None:
            machine = override or platform.machine()
        return PlatformDetector.normalize_machine(machine)

    @staticmethod
    def cpu_count() -> int:
        """Number of CPUs available for parallel make jobs."""
        return os.cpu_count() or 1

    @staticmethod
    def get_platform_info() -> dict:
        """Get detailed information about the current platform.

        Returns:
            Dictionary with platform information including system, machine, and Python info
        """
        return {
            "system": platform.system(),
            "machine": platform.machine(),
            "platform": platform.platform(),
            "python_version": platform.python_version(),
            "is_64bit": sys.maxsize > 2**32,
            "host_arch": PlatformDetector.detect_host_arch(),
            "cpu_count": PlatformDetector.cpu_count(),
        }
