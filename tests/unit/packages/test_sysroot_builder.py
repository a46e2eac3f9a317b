"""Unit tests for the linux-native sysroot builder."""

import pytest

from bootforge.config import REQUIRED_SYSROOT_LIBS, get_arch_spec
from bootforge.packages import SysrootBuilder, SysrootError


@pytest.fixture
def host_libs(tmp_path):
    """A fake library directory holding an aarch64 linker and glibc libraries."""
    lib_dir = tmp_path / "host" / "lib"
    lib_dir.mkdir(parents=True)
    (lib_dir / "ld-linux-aarch64.so.1").write_bytes(b"\x7fELF linker")
    (lib_dir / "libc.so.6.real").write_bytes(b"\x7fELF libc")
    (lib_dir / "libc.so.6").symlink_to("libc.so.6.real")
    for name in REQUIRED_SYSROOT_LIBS[1:]:
        (lib_dir / name).write_bytes(b"\x7fELF " + name.encode())
    return lib_dir


class TestSysrootBuilder:
    """Test cases for SysrootBuilder."""

    def test_build_layout(self, tmp_path, host_libs):
        """Test the linker and libraries are copied into lib/."""
        builder = SysrootBuilder(tmp_path / "sysroot", host_arch="x86_64", search_paths=[host_libs], show_progress=False)
        sysroot = builder.build("arm64-v8a")

        assert sysroot.path == tmp_path / "sysroot" / "arm64-v8a"
        assert sysroot.linker_path == sysroot.lib_dir / "ld-linux-aarch64.so.1"
        assert sysroot.linker_path.stat().st_mode & 0o777 == 0o755
        assert sorted(sysroot.libraries) == sorted(REQUIRED_SYSROOT_LIBS)
        assert sysroot.missing == []
        assert (sysroot.path / "usr" / "lib").is_dir()
        assert (sysroot.path / "usr" / "include").is_dir()
        assert (sysroot.path / "lib64").is_symlink()
        assert sysroot.info_file.exists()
        assert "aarch64-linux-gnu" in sysroot.info_file.read_text()

    def test_symlinked_library_copied_as_file(self, tmp_path, host_libs):
        """Test versioned library symlinks are dereferenced."""
        builder = SysrootBuilder(tmp_path / "sysroot", host_arch="x86_64", search_paths=[host_libs], show_progress=False)
        sysroot = builder.build("arm64-v8a")
        libc = sysroot.lib_dir / "libc.so.6"
        assert libc.is_file() and not libc.is_symlink()
        assert libc.read_bytes() == b"\x7fELF libc"
        assert libc.stat().st_mode & 0o777 == 0o644

    def test_missing_optional_library(self, tmp_path, host_libs):
        """Test a missing non-libc library is reported, not fatal."""
        (host_libs / "libresolv.so.2").unlink()
        builder = SysrootBuilder(tmp_path / "sysroot", host_arch="x86_64", search_paths=[host_libs], show_progress=False)
        sysroot = builder.build("arm64-v8a")
        assert sysroot.missing == ["libresolv.so.2"]
        assert "Missing:" in sysroot.info_file.read_text()

    def test_missing_libc_is_fatal(self, tmp_path, host_libs):
        """Test a sysroot without libc.so.6 is refused and removed."""
        (host_libs / "libc.so.6").unlink()
        builder = SysrootBuilder(tmp_path / "sysroot", host_arch="x86_64", search_paths=[host_libs], show_progress=False)
        with pytest.raises(SysrootError, match="libc.so.6"):
            builder.build("arm64-v8a")
        assert not (tmp_path / "sysroot" / "arm64-v8a").exists()

    def test_missing_linker_is_fatal(self, tmp_path, host_libs):
        """Test a missing dynamic linker raises SysrootError."""
        builder = SysrootBuilder(tmp_path / "sysroot", host_arch="x86_64", search_paths=[host_libs], show_progress=False)
        with pytest.raises(SysrootError, match="ld-linux-armhf.so.3"):
            builder.build("armeabi-v7a")

    def test_reuse_existing(self, tmp_path, host_libs):
        """Test a complete sysroot is reused unless clean is requested."""
        builder = SysrootBuilder(tmp_path / "sysroot", host_arch="x86_64", search_paths=[host_libs], show_progress=False)
        builder.build("arm64-v8a")

        reused = builder.build("arm64-v8a")
        assert reused.reused
        assert "libc.so.6" in reused.libraries

        rebuilt = builder.build("arm64-v8a", clean=True)
        assert not rebuilt.reused

    def test_32bit_has_no_lib64(self, tmp_path):
        """Test 32-bit sysroots don't get a lib64 link."""
        lib_dir = tmp_path / "host"
        lib_dir.mkdir()
        (lib_dir / "ld-linux.so.2").write_bytes(b"linker")
        (lib_dir / "libc.so.6").write_bytes(b"libc")
        builder = SysrootBuilder(tmp_path / "sysroot", host_arch="x86_64", search_paths=[lib_dir], show_progress=False)
        sysroot = builder.build("x86")
        assert not (sysroot.path / "lib64").exists()

    def test_source_dirs_cross(self, tmp_path):
        """Test cross builds search the triplet directory under /usr."""
        builder = SysrootBuilder(tmp_path, host_arch="x86_64", show_progress=False)
        dirs = builder.source_lib_dirs(get_arch_spec("arm64-v8a"))
        assert str(dirs[0]) == "/usr/aarch64-linux-gnu/lib"

    def test_source_dirs_native(self, tmp_path):
        """Test native builds search the multiarch host directories first."""
        builder = SysrootBuilder(tmp_path, host_arch="x86_64", show_progress=False)
        dirs = builder.source_lib_dirs(get_arch_spec("x86_64"))
        assert str(dirs[0]) == "/lib/x86_64-linux-gnu"
