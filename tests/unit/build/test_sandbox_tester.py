"""Unit tests for SandboxTester and ProotSandbox."""

import json
from unittest.mock import patch

import psutil
import pytest

from bootforge.build.sandbox import (
    CommandResult,
    ProotSandbox,
    SandboxError,
    SandboxExempt,
    SandboxTester,
    kill_process_tree,
)


class FakeRunner:
    """Sandbox runner answering from a table of canned results."""

    def __init__(self, results=None, default=None):
        self.results = results or {}
        self.default = default
        self.commands = []

    def run(self, command, timeout):
        self.commands.append((command, timeout))
        key = " ".join(command)
        if key in self.results:
            result = self.results[key]
        elif self.default is not None:
            result = self.default
        else:
            # Echo-style output so expected-output checks pass
            result = CommandResult(command, 0, stdout="test value\n")
        if isinstance(result, Exception):
            raise result
        return result


def which_from(*available):
    def _which(name):
        return f"/usr/bin/{name}" if name in available else None

    return _which


class TestSandboxTester:
    """Test cases for SandboxTester."""

    def test_all_pass(self, tmp_path, make_bootstrap):
        """Test a healthy bootstrap passes every case and is PRoot-compatible."""
        bootstrap = make_bootstrap("static")
        runner = FakeRunner()
        tester = SandboxTester(timeout=5, report_dir=tmp_path / "dist", show_progress=False)

        report = tester.run(bootstrap, runner=runner)

        assert report.tests_run == 5
        assert report.tests_passed == 5
        assert report.proot_compatible
        assert all(timeout == 5 for _command, timeout in runner.commands)
        assert (tmp_path / "dist" / "test-report-static-x86_64.json").exists()

    def test_expected_output_mismatch(self, tmp_path, make_bootstrap):
        """Test a zero exit with the wrong output still fails."""
        bootstrap = make_bootstrap("static")
        runner = FakeRunner(results={"/usr/bin/sh -c echo test": CommandResult([], 0, stdout="nope\n")})
        report = SandboxTester(show_progress=False).run(bootstrap, runner=runner)

        shell = report.tests[0]
        assert shell.name == "Shell execution"
        assert not shell.passed
        assert report.tests_failed == 1
        assert not report.proot_compatible

    def test_timeout_recorded_and_suite_continues(self, tmp_path, make_bootstrap):
        """Test a timed-out case fails but later cases still run."""
        bootstrap = make_bootstrap("static")
        hung = CommandResult([], -9, timed_out=True, duration=5.0)
        runner = FakeRunner(results={"/usr/bin/sh -c echo $0": hung})
        report = SandboxTester(timeout=5, show_progress=False).run(bootstrap, runner=runner)

        version = report.tests[1]
        assert version.timed_out
        assert not version.passed
        assert len(runner.commands) == 5
        assert report.tests_passed == 4

    def test_runner_exception_is_failed_case(self, tmp_path, make_bootstrap):
        """Test a runner error is recorded as a failed case, not raised."""
        bootstrap = make_bootstrap("static")
        runner = FakeRunner(default=OSError("exec format error"))
        report = SandboxTester(show_progress=False).run(bootstrap, runner=runner)

        assert report.tests_run == 5
        assert report.tests_passed == 0
        assert report.tests[0].returncode == -1
        assert "exec format error" in report.tests[0].output

    def test_android_native_exempt(self, tmp_path, make_bootstrap):
        """Test android-native bootstraps are skipped and never PRoot-compatible."""
        bootstrap = make_bootstrap("android-native", "arm64-v8a")
        runner = FakeRunner()
        report = SandboxTester(report_dir=tmp_path / "dist", show_progress=False).run(bootstrap, runner=runner)

        assert isinstance(report, SandboxExempt)
        assert runner.commands == []
        data = json.loads((tmp_path / "dist" / "test-report-android-native-arm64-v8a.json").read_text())
        assert data["skipped"] is True
        assert data["prootCompatible"] is False
        assert data["testsRun"] == 0

    def test_report_fields(self, tmp_path, make_bootstrap):
        """Test the report document carries counts and per-test entries."""
        bootstrap = make_bootstrap("linux-native", "x86")
        report = SandboxTester(show_progress=False).run(bootstrap, runner=FakeRunner())
        data = report.to_dict()

        assert data["buildMode"] == "linux-native"
        assert data["architecture"] == "x86"
        assert data["testsPassed"] == 5
        assert "skipped" not in data
        assert data["tests"][0]["command"] == "/usr/bin/sh -c echo test"
        assert set(data["tests"][0]) == {"name", "command", "passed", "returncode", "timedOut", "durationSeconds", "output"}

    def test_runner_factory_used(self, tmp_path, make_bootstrap):
        """Test the runner factory builds the sandbox when none is given."""
        bootstrap = make_bootstrap("static")
        runner = FakeRunner()
        tester = SandboxTester(runner_factory=lambda b: runner, show_progress=False)
        tester.run(bootstrap)
        assert len(runner.commands) == 5

    def test_runner_factory_error_propagates(self, tmp_path, make_bootstrap):
        """Test sandbox setup errors are raised to the caller."""
        bootstrap = make_bootstrap("static")

        def broken_factory(b):
            raise SandboxError("PRoot not found")

        with pytest.raises(SandboxError):
            SandboxTester(runner_factory=broken_factory, show_progress=False).run(bootstrap)


class TestTestSuite:
    """Test cases for the command suite fallbacks."""

    def test_fallbacks_without_bash_and_ls(self, make_bootstrap):
        """Test sh and busybox ls are used when bash and ls are missing."""
        bootstrap = make_bootstrap("static")
        cases = SandboxTester.test_suite(bootstrap)
        assert [c.name for c in cases] == [
            "Shell execution",
            "Bash version",
            "List binaries",
            "File operations",
            "Environment variables",
        ]
        assert cases[1].command == ["/usr/bin/sh", "-c", "echo $0"]
        assert cases[2].command == ["/usr/bin/busybox", "ls", "/usr/bin"]

    def test_prefers_bash_and_ls(self, make_bootstrap):
        """Test bash --version and ls are used when installed."""
        bootstrap = make_bootstrap("static")
        (bootstrap.bin_dir / "bash").write_text("bash")
        (bootstrap.bin_dir / "ls").symlink_to("busybox")
        cases = SandboxTester.test_suite(bootstrap)
        assert cases[1].command == ["/usr/bin/bash", "--version"]
        assert cases[2].command == ["/usr/bin/ls", "/usr/bin"]


class TestProotSandbox:
    """Test cases for ProotSandbox."""

    def test_native_command(self, make_bootstrap):
        """Test the command line for a same-arch host has no emulator."""
        bootstrap = make_bootstrap("static", "x86_64")
        sandbox = ProotSandbox(bootstrap, host_arch="x86_64", which=which_from("proot"))
        cmd = sandbox.build_command(["/usr/bin/sh", "-c", "echo test"])
        assert cmd[:3] == ["/usr/bin/proot", "-r", str(bootstrap.root)]
        assert "-q" not in cmd
        assert cmd[-3:] == ["/usr/bin/sh", "-c", "echo test"]
        assert cmd.count("-b") == 3

    def test_foreign_arch_uses_emulator(self, make_bootstrap):
        """Test a foreign-arch bootstrap runs under qemu."""
        bootstrap = make_bootstrap("static", "arm64-v8a")
        sandbox = ProotSandbox(bootstrap, host_arch="x86_64", which=which_from("proot", "qemu-aarch64"))
        cmd = sandbox.build_command(["/usr/bin/sh"])
        assert cmd[3:5] == ["-q", "/usr/bin/qemu-aarch64"]

    def test_arch_specific_proot(self, make_bootstrap):
        """Test proot-{arch} is found when plain proot is not."""
        bootstrap = make_bootstrap("static", "x86_64")
        sandbox = ProotSandbox(bootstrap, host_arch="x86_64", which=which_from("proot-x86_64"))
        assert sandbox.proot == "/usr/bin/proot-x86_64"

    def test_explicit_proot(self, make_bootstrap):
        """Test an explicit proot path wins over PATH lookup."""
        bootstrap = make_bootstrap("static", "x86_64")
        sandbox = ProotSandbox(bootstrap, proot="/opt/proot", host_arch="x86_64", which=which_from("proot"))
        assert sandbox.proot == "/opt/proot"

    def test_missing_proot(self, make_bootstrap):
        """Test SandboxError when no proot binary is available."""
        bootstrap = make_bootstrap("static", "x86_64")
        with pytest.raises(SandboxError, match="PRoot not found"):
            ProotSandbox(bootstrap, host_arch="x86_64", which=which_from())

    def test_missing_emulator(self, make_bootstrap):
        """Test SandboxError when the foreign-arch emulator is missing."""
        bootstrap = make_bootstrap("static", "armeabi-v7a")
        with pytest.raises(SandboxError, match="qemu-arm"):
            ProotSandbox(bootstrap, host_arch="x86_64", which=which_from("proot"))

    def test_run_missing_executable(self, make_bootstrap):
        """Test an unstartable sandbox returns a failed CommandResult."""
        bootstrap = make_bootstrap("static", "x86_64")
        sandbox = ProotSandbox(bootstrap, proot="/nonexistent/proot", host_arch="x86_64")
        with patch("bootforge.build.sandbox.subprocess.Popen", side_effect=FileNotFoundError("no proot")):
            result = sandbox.run(["/usr/bin/sh"], timeout=1)
        assert result.returncode == -1
        assert "no proot" in result.stderr


class TestKillProcessTree:
    """Test cases for kill_process_tree."""

    def test_missing_process(self):
        """Test a vanished pid signals nothing."""
        with patch("bootforge.build.sandbox.psutil.Process", side_effect=psutil.NoSuchProcess(999999)):
            assert kill_process_tree(999999) == 0
