"""Unit tests for BinaryVerifier."""

import json
import subprocess
from unittest.mock import patch

import pytest

from bootforge.build.verifier import (
    DYNAMIC,
    NOT_ELF,
    STATIC,
    BinaryVerifier,
    VerificationFailure,
    inspect_elf,
)

X86_64_LINKER = "/lib64/ld-linux-x86-64.so.2"


def no_ldd(name):
    return None


class TestInspectElf:
    """Test cases for inspect_elf."""

    def test_static(self, tmp_path, make_elf):
        """Test a static image has no interpreter or needed libraries."""
        info = inspect_elf(make_elf(tmp_path / "prog"))
        assert info.interpreter is None
        assert info.needed == []
        assert not info.is_dynamic
        assert info.machine == "EM_X86_64"

    def test_dynamic(self, tmp_path, make_elf):
        """Test interpreter, DT_NEEDED and RUNPATH are read."""
        path = make_elf(
            tmp_path / "prog",
            interpreter=X86_64_LINKER,
            needed=["libc.so.6", "libm.so.6"],
            runpath="/lib:/usr/lib",
        )
        info = inspect_elf(path)
        assert info.interpreter == X86_64_LINKER
        assert info.needed == ["libc.so.6", "libm.so.6"]
        assert info.rpath == ["/lib", "/usr/lib"]
        assert info.is_dynamic


class TestStaticVerification:
    """Test cases for static bootstraps."""

    def test_static_binaries_pass(self, tmp_path, make_elf, make_bootstrap):
        """Test static ELF binaries and scripts pass."""
        bootstrap = make_bootstrap("static")
        make_elf(bootstrap.bin_dir / "busybox")

        results = BinaryVerifier(show_progress=False, which=no_ldd).verify(bootstrap)
        by_name = {r.binary.name: r for r in results}
        assert by_name["busybox"].linkage == STATIC
        assert by_name["busybox"].message == "Statically linked"
        assert by_name["sh"].linkage == NOT_ELF
        assert all(r.passed for r in results)

    def test_dynamic_binary_fails(self, tmp_path, make_elf, make_bootstrap):
        """Test a dynamic binary in a static bootstrap fails with details."""
        bootstrap = make_bootstrap("static")
        make_elf(bootstrap.bin_dir / "bash", interpreter=X86_64_LINKER, needed=["libc.so.6"])
        make_elf(bootstrap.bin_dir / "busybox")

        with pytest.raises(VerificationFailure) as exc_info:
            BinaryVerifier(show_progress=False, which=no_ldd).verify(bootstrap)

        failures = exc_info.value.failures
        assert [f.binary.name for f in failures] == ["bash"]
        assert failures[0].linkage == DYNAMIC
        assert "Expected static binary" in failures[0].message
        assert "libc.so.6" in str(exc_info.value)

    def test_all_failures_reported(self, tmp_path, make_elf, make_bootstrap):
        """Test every failing binary is reported, not just the first."""
        bootstrap = make_bootstrap("static")
        make_elf(bootstrap.bin_dir / "a", needed=["libc.so.6"])
        make_elf(bootstrap.bin_dir / "b", interpreter=X86_64_LINKER)

        with pytest.raises(VerificationFailure) as exc_info:
            BinaryVerifier(show_progress=False, which=no_ldd).verify(bootstrap)
        assert len(exc_info.value.failures) == 2

    def test_ldd_cross_check(self, tmp_path, make_elf, make_bootstrap):
        """Test ldd output reporting dependencies fails a static binary."""
        bootstrap = make_bootstrap("static")
        make_elf(bootstrap.bin_dir / "busybox")
        completed = subprocess.CompletedProcess([], 0, stdout="\tlibc.so.6 => /lib/libc.so.6\n", stderr="")

        with patch("bootforge.build.verifier.subprocess.run", return_value=completed):
            with pytest.raises(VerificationFailure, match="ldd reports"):
                BinaryVerifier(show_progress=False, which=lambda name: "/usr/bin/ldd").verify(bootstrap)

    def test_ldd_static_marker(self, tmp_path, make_elf, make_bootstrap):
        """Test ldd's 'not a dynamic executable' confirms a static binary."""
        bootstrap = make_bootstrap("static")
        make_elf(bootstrap.bin_dir / "busybox")
        completed = subprocess.CompletedProcess([], 1, stdout="", stderr="\tnot a dynamic executable\n")

        with patch("bootforge.build.verifier.subprocess.run", return_value=completed):
            results = BinaryVerifier(show_progress=False, which=lambda name: "/usr/bin/ldd").verify(bootstrap)
        assert all(r.passed for r in results)


class TestLinuxNativeVerification:
    """Test cases for linux-native bootstraps."""

    def test_expected_interpreter_passes(self, tmp_path, make_elf, make_bootstrap):
        """Test the arch's linker passes, with RPATH warnings when missing."""
        bootstrap = make_bootstrap("linux-native")
        make_elf(bootstrap.bin_dir / "bash", interpreter=X86_64_LINKER, needed=["libc.so.6"], rpath="/lib:/usr/lib")
        make_elf(bootstrap.bin_dir / "ls", interpreter=X86_64_LINKER, needed=["libc.so.6"])

        results = BinaryVerifier(show_progress=False).verify(bootstrap)
        by_name = {r.binary.name: r for r in results}
        assert by_name["bash"].warnings == []
        assert by_name["bash"].message == f"Interpreter {X86_64_LINKER}"
        assert by_name["ls"].passed
        assert by_name["ls"].warnings == ["No RPATH/RUNPATH set"]

    def test_partial_rpath_warns(self, tmp_path, make_elf, make_bootstrap):
        """Test an RPATH missing /usr/lib produces a warning."""
        bootstrap = make_bootstrap("linux-native")
        make_elf(bootstrap.bin_dir / "bash", interpreter=X86_64_LINKER, needed=["libc.so.6"], rpath="/lib")
        result = BinaryVerifier(show_progress=False).verify(bootstrap)[0]
        assert result.warnings == ["RPATH does not include /usr/lib (found /lib)"]

    def test_wrong_interpreter_fails(self, tmp_path, make_elf, make_bootstrap):
        """Test a host-style interpreter path fails."""
        bootstrap = make_bootstrap("linux-native")
        make_elf(bootstrap.bin_dir / "bash", interpreter="/lib/ld-linux.so.2", needed=["libc.so.6"])
        with pytest.raises(VerificationFailure, match="Wrong ELF interpreter"):
            BinaryVerifier(show_progress=False).verify(bootstrap)

    def test_static_binary_fails(self, tmp_path, make_elf, make_bootstrap):
        """Test a binary without interpreter fails in linux-native mode."""
        bootstrap = make_bootstrap("linux-native")
        make_elf(bootstrap.bin_dir / "bash")
        with pytest.raises(VerificationFailure, match="No ELF interpreter"):
            BinaryVerifier(show_progress=False).verify(bootstrap)

    def test_configured_linker_override(self, tmp_path, make_elf, make_bootstrap):
        """Test an explicit linker path replaces the arch default."""
        bootstrap = make_bootstrap("linux-native")
        make_elf(bootstrap.bin_dir / "bash", interpreter="/lib/ld-custom.so", rpath="/lib:/usr/lib")
        results = BinaryVerifier(linker_path="/lib/ld-custom.so", show_progress=False).verify(bootstrap)
        assert all(r.passed for r in results)


class TestAndroidNativeVerification:
    """Test cases for android-native bootstraps."""

    def test_any_linkage_passes(self, tmp_path, make_elf, make_bootstrap):
        """Test bionic binaries are reported but not held to glibc rules."""
        bootstrap = make_bootstrap("android-native", "arm64-v8a")
        make_elf(bootstrap.bin_dir / "bash", interpreter="/system/bin/linker64", needed=["libc.so"])
        results = BinaryVerifier(show_progress=False).verify(bootstrap)
        bash = [r for r in results if r.binary.name == "bash"][0]
        assert bash.passed
        assert bash.message == "ELF binary (dynamic)"

    def test_unparseable_elf_warns(self, tmp_path, make_bootstrap):
        """Test a truncated ELF is a warning, not a failure, for prebuilt binaries."""
        bootstrap = make_bootstrap("android-native", "arm64-v8a")
        (bootstrap.bin_dir / "broken").write_bytes(b"\x7fELF\x02")
        results = BinaryVerifier(show_progress=False).verify(bootstrap)
        broken = [r for r in results if r.binary.name == "broken"][0]
        assert broken.passed
        assert broken.warnings


class TestVerificationReport:
    """Test cases for the JSON report."""

    def test_report_written_even_on_failure(self, tmp_path, make_elf, make_bootstrap):
        """Test the report lists every binary including failures."""
        bootstrap = make_bootstrap("static")
        make_elf(bootstrap.bin_dir / "bash", needed=["libc.so.6"])
        verifier = BinaryVerifier(report_dir=tmp_path / "dist", show_progress=False, which=no_ldd)

        with pytest.raises(VerificationFailure):
            verifier.verify(bootstrap)

        report_path = tmp_path / "dist" / "verification-report-static-x86_64.json"
        assert verifier.report_path(bootstrap) == report_path
        report = json.loads(report_path.read_text())
        assert report["buildMode"] == "static"
        assert report["binariesChecked"] == 2
        assert report["binariesFailed"] == 1
        assert {r["binary"] for r in report["results"]} == {"bash", "sh"}
