"""Unit tests for host platform detection."""

import pytest

from bootforge.packages import PlatformDetector, PlatformError


class TestPlatformDetector:
    """Test cases for PlatformDetector."""

    @pytest.mark.parametrize(
        "machine,expected",
        [
            ("x86_64", "x86_64"),
            ("AMD64", "x86_64"),
            ("arm64", "aarch64"),
            ("aarch64", "aarch64"),
            ("armv7l", "arm"),
            ("i386", "i686"),
            ("i686", "i686"),
        ],
    )
    def test_normalize_machine(self, machine, expected):
        """Test uname machine strings map to Linux arch names."""
        assert PlatformDetector.normalize_machine(machine) == expected

    def test_unsupported_machine(self):
        """Test unknown machines raise PlatformError."""
        with pytest.raises(PlatformError):
            PlatformDetector.normalize_machine("s390x")

    def test_detect_with_explicit_machine(self):
        """Test an explicit machine string is normalized."""
        assert PlatformDetector.detect_host_arch("amd64") == "x86_64"

    def test_detect_env_override(self, monkeypatch):
        """Test BOOTFORGE_HOST_ARCH takes precedence over platform.machine()."""
        monkeypatch.setenv("BOOTFORGE_HOST_ARCH", "armv8l")
        assert PlatformDetector.detect_host_arch() == "arm"

    def test_cpu_count(self):
        """Test cpu_count is always at least one."""
        assert PlatformDetector.cpu_count() >= 1

    def test_platform_info(self, monkeypatch):
        """Test the host summary reports the detected arch and CPU count."""
        monkeypatch.setenv("BOOTFORGE_HOST_ARCH", "amd64")
        info = PlatformDetector.get_platform_info()
        assert info["host_arch"] == "x86_64"
        assert info["cpu_count"] >= 1
        assert set(info) >= {"system", "machine", "platform", "python_version", "is_64bit"}
