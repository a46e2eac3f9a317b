"""
Unit tests for PackageCompiler.

Tests package compilation for a (mode, arch) cell including:
- Mode strategies (static and linux-native flags)
- Build cache hits and misses
- Failure isolation and metrics
- Prebuilt Termux bootstraps for android-native
"""

from pathlib import Path
from unittest.mock import Mock, patch

import pytest

from bootforge.build.package_compiler import (
    PREBUILT_PACKAGE,
    BuildFailure,
    BuildStrategy,
    LinuxNativeStrategy,
    PackageCompiler,
    StaticStrategy,
)
from bootforge.build.recipes import PackageRecipe
from bootforge.config import ConfigError
from bootforge.config.architectures import Architecture, BuildMode
from bootforge.packages import BuildCache, BuildMetrics, SourceFetchError, SourceProvider, ToolchainSelector
from bootforge.packages.downloader import SourcePackage
from bootforge.packages.sysroot import Sysroot


def which_from(*available):
    def _which(name):
        return f"/usr/bin/{name}" if name in available else None

    return _which


class FakeRecipe(PackageRecipe):
    """Recipe that 'builds' by writing a placeholder binary."""

    name = "busybox"
    builds = 0

    def build(self, source_dir, output_dir, flags):
        FakeRecipe.builds += 1
        bin_dir = output_dir / "bin"
        bin_dir.mkdir(parents=True, exist_ok=True)
        binary = bin_dir / "busybox"
        binary.write_bytes(b"placeholder binary")
        binary.chmod(0o755)
        (output_dir / "busybox-applets.txt").write_text("ls\n")
        return [binary]


@pytest.fixture
def provider(tmp_path):
    provider = Mock(spec=SourceProvider)
    provider.fetch_source.return_value = SourcePackage(
        name="busybox", version="1.36.1", url="https://example.com/busybox.tar.bz2", checksum=None, path=tmp_path
    )
    return provider


@pytest.fixture
def selector():
    return ToolchainSelector(host_arch="x86_64", which=which_from("aarch64-linux-gnu-gcc"))


@pytest.fixture
def fake_recipe():
    FakeRecipe.builds = 0
    with patch("bootforge.build.package_compiler.get_recipe", side_effect=lambda name, ex, sp=True: FakeRecipe(ex, False)):
        yield FakeRecipe


class TestStrategies:
    """Test cases for the mode strategies."""

    def test_static_flags_cross(self, build_config, selector):
        """Test static cross builds use the cross compiler and -static."""
        toolchain = selector.resolve("arm64-v8a")
        flags = StaticStrategy(build_config, which_from("musl-gcc")).flags(toolchain)
        assert flags.cc == "aarch64-linux-gnu-gcc"
        assert flags.static
        assert "-static" in flags.ldflags
        assert "-Os" in flags.cflags
        assert "-march=armv8-a" in flags.cflags
        assert flags.cross_prefix == "aarch64-linux-gnu-"
        assert flags.host == "aarch64-linux-gnu"

    def test_static_native_prefers_musl(self, build_config, selector):
        """Test native static builds use musl-gcc when installed."""
        toolchain = selector.resolve("x86_64")
        assert StaticStrategy(build_config, which_from("musl-gcc")).flags(toolchain).cc == "musl-gcc"
        assert StaticStrategy(build_config, which_from()).flags(toolchain).cc == "gcc"

    def test_linux_native_flags(self, build_config, selector, tmp_path):
        """Test linux-native links with RPATH, interpreter and the sysroot."""
        toolchain = selector.resolve("arm64-v8a")
        sysroot = Sysroot(path=tmp_path, arch=toolchain.arch, linker_path=tmp_path / "lib" / "ld-linux-aarch64.so.1")
        flags = LinuxNativeStrategy(build_config).flags(toolchain, sysroot)
        assert not flags.static
        assert "-Wl,-rpath,/lib:/usr/lib" in flags.ldflags
        assert "-Wl,--dynamic-linker=/lib/ld-linux-aarch64.so.1" in flags.ldflags
        assert f"-L{tmp_path / 'lib'}" in flags.ldflags
        assert "-static" not in flags.ldflags

    def test_strategy_base_is_abstract(self, build_config):
        """Test the strategy base cannot be instantiated without flags()."""
        with pytest.raises(TypeError):
            BuildStrategy(build_config)

        class Incomplete(BuildStrategy):
            pass

        with pytest.raises(TypeError):
            Incomplete(build_config)


class TestPackageCompiler:
    """Test cases for PackageCompiler."""

    def test_build_and_cache(self, tmp_path, build_config, provider, selector, fake_recipe):
        """Test a second identical build is restored from the cache."""
        cache = BuildCache(cache_dir=tmp_path / "cache")
        metrics = BuildMetrics(tmp_path / "metrics")
        compiler = PackageCompiler(
            build_config, tmp_path / "build", cache=cache, source_provider=provider,
            toolchain_selector=selector, metrics=metrics, show_progress=False,
        )

        first = compiler.build("busybox", "static", "arm64-v8a")
        assert not first.cache_hit
        assert first.output_dir == tmp_path / "build" / "static" / "arm64-v8a" / "busybox"
        assert [b.name for b in first.binaries] == ["busybox"]
        assert cache.check(first.cache_key)

        second = compiler.build("busybox", "static", "arm64-v8a")
        assert second.cache_hit
        assert second.cache_key == first.cache_key
        assert (second.output_dir / "busybox-applets.txt").exists()
        assert fake_recipe.builds == 1
        assert provider.fetch_source.call_count == 1

        report = metrics.report()
        assert report["total_builds"] == 2
        assert report["cache_hits"] == 1

    def test_cache_key_differs_per_cell(self, tmp_path, build_config, selector):
        """Test different modes and arches never share a key."""
        compiler = PackageCompiler(build_config, tmp_path, toolchain_selector=selector, show_progress=False)
        package = build_config.packages["busybox"]
        arm = selector.resolve("arm64-v8a")
        x86 = selector.resolve("x86_64")
        keys = {
            compiler.cache_key(package, BuildMode.STATIC, Architecture.ARM64_V8A, arm),
            compiler.cache_key(package, BuildMode.LINUX_NATIVE, Architecture.ARM64_V8A, arm),
            compiler.cache_key(package, BuildMode.STATIC, Architecture.X86_64, x86),
        }
        assert len(keys) == 3

    def test_failure_wrapped(self, tmp_path, build_config, provider, selector):
        """Test recipe errors become BuildFailure for that cell and are recorded."""
        metrics = BuildMetrics(tmp_path / "metrics")
        broken = Mock()
        broken.build.side_effect = FileNotFoundError("busybox: expected build output not found")
        compiler = PackageCompiler(
            build_config, tmp_path / "build", source_provider=provider,
            toolchain_selector=selector, metrics=metrics, show_progress=False,
        )

        with patch("bootforge.build.package_compiler.get_recipe", return_value=broken):
            with pytest.raises(BuildFailure) as exc_info:
                compiler.build("busybox", "static", "arm64-v8a")

        assert exc_info.value.package == "busybox"
        assert exc_info.value.mode == "static"
        assert exc_info.value.arch == "arm64-v8a"
        assert metrics.report()["failed"] == 1

    def test_build_static_disabled(self, tmp_path, build_config, provider, selector):
        """Test packages marked buildStatic=false fail static builds."""
        build_config.packages["busybox"].build_static = False
        compiler = PackageCompiler(
            build_config, tmp_path, source_provider=provider, toolchain_selector=selector, show_progress=False
        )
        with pytest.raises(BuildFailure, match="buildStatic=false"):
            compiler.build("busybox", "static", "arm64-v8a")

    def test_unknown_package(self, tmp_path, build_config, provider, selector):
        """Test an unconfigured package raises ConfigError."""
        compiler = PackageCompiler(
            build_config, tmp_path, source_provider=provider, toolchain_selector=selector, show_progress=False
        )
        with pytest.raises(ConfigError):
            compiler.build("vim", "static", "x86_64")

    def test_build_all(self, tmp_path, build_config, provider, selector, fake_recipe):
        """Test build_all returns one artifact per configured package."""
        compiler = PackageCompiler(
            build_config, tmp_path, source_provider=provider, toolchain_selector=selector, show_progress=False
        )
        artifacts = compiler.build_all("static", "x86_64")
        assert [a.package for a in artifacts] == ["busybox"]

    def test_prebuilt(self, tmp_path, build_config, provider):
        """Test android-native copies the extracted Termux bootstrap."""
        extracted = tmp_path / "extracted"
        (extracted / "bin").mkdir(parents=True)
        (extracted / "bin" / "bash").write_bytes(b"\x7fELF")
        provider.fetch_prebuilt.return_value = extracted

        compiler = PackageCompiler(build_config, tmp_path / "build", source_provider=provider, show_progress=False)
        artifacts = compiler.build_all("android-native", "arm64-v8a")

        assert len(artifacts) == 1
        assert artifacts[0].package == PREBUILT_PACKAGE
        assert (artifacts[0].output_dir / "bin" / "bash").exists()
        assert provider.fetch_prebuilt.call_args[0][0].termux_arch == "aarch64"

    def test_prebuilt_failure(self, tmp_path, build_config, provider):
        """Test a failed prebuilt fetch raises BuildFailure."""
        provider.fetch_prebuilt.side_effect = SourceFetchError("404")
        compiler = PackageCompiler(build_config, tmp_path, source_provider=provider, show_progress=False)
        with pytest.raises(BuildFailure, match="404"):
            compiler.build("ignored", "android-native", "x86")

    def test_existing_artifacts(self, tmp_path, build_config, provider, selector, fake_recipe):
        """Test already-built outputs are found without rebuilding."""
        compiler = PackageCompiler(
            build_config, tmp_path, source_provider=provider, toolchain_selector=selector, show_progress=False
        )
        with pytest.raises(BuildFailure, match="not built yet"):
            compiler.existing_artifacts("static", "x86_64")

        compiler.build("busybox", "static", "x86_64")
        artifacts = compiler.existing_artifacts("static", "x86_64")
        assert artifacts[0].binaries == [Path(tmp_path / "static" / "x86_64" / "busybox" / "bin" / "busybox")]
