"""
Sandbox compatibility testing.

Runs a fixed command suite inside an assembled bootstrap through a sandbox
runner (PRoot by default, with a QEMU user-mode emulator for foreign
architectures) and records which commands succeed.

Each command gets its own timeout. A failing or hanging command is recorded
and the suite carries on; a timed-out command has its whole process tree
killed. Android-native bootstraps are exempt: Bionic binaries cannot run
under PRoot on a Linux host.
"""

import json
import logging
import os
import shutil
import subprocess
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Protocol

import psutil

from ..config.architectures import BuildMode
from ..packages.platform_utils import PlatformDetector
from .assembler import Bootstrap

DEFAULT_TIMEOUT = 30.0


class SandboxError(Exception):
    """Raised when the sandbox itself cannot be set up (e.g. proot missing)."""

    pass


@dataclass
class CommandResult:
    """Result of one command run inside the sandbox."""

    command: List[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False
    duration: float = 0.0


class SandboxRunner(Protocol):
    """Anything that can run a command inside a bootstrap root."""

    def run(self, command: List[str], timeout: float) -> CommandResult: ...


def kill_process_tree(pid: int) -> int:
    """Terminate a process and all its descendants, children first.

    Returns:
        Number of processes signalled
    """
    try:
        root = psutil.Process(pid)
        procs = root.children(recursive=True)
        procs.reverse()
        procs.append(root)
    except psutil.NoSuchProcess:
        return 0

    signalled = []
    for proc in procs:
        try:
            proc.terminate()
            signalled.append(proc)
        except psutil.NoSuchProcess:
            pass  # Already dead

    _gone, alive = psutil.wait_procs(signalled, timeout=3)
    for proc in alive:
        try:
            proc.kill()
            logging.warning(f"Force killed stubborn process {proc.pid}")
        except psutil.NoSuchProcess:
            pass
    return len(signalled)


class ProotSandbox:
    """Runs commands with `proot -r ROOT`, adding `-q qemu-*` for foreign architectures."""

    BINDS = ("/dev", "/proc", "/sys")

    def __init__(
        self,
        bootstrap: Bootstrap,
        proot: Optional[str] = None,
        host_arch: Optional[str] = None,
        which: Callable[[str], Optional[str]] = shutil.which,
    ):
        """Initialize PRoot sandbox.

        Args:
            bootstrap: Bootstrap used as the guest root
            proot: Explicit proot binary (default: search PATH)
            host_arch: Host Linux arch (default: detected)
            which: Executable lookup function (shutil.which)

        Raises:
            SandboxError: If proot or the required emulator cannot be found
        """
        self.bootstrap = bootstrap
        spec = bootstrap.architecture.spec
        self.host_arch = host_arch or PlatformDetector.detect_host_arch()

        self.proot = proot or which("proot") or which(spec.proot_binary)
        if not self.proot:
            raise SandboxError(f"PRoot not found (looked for 'proot' and '{spec.proot_binary}' on PATH)")

        self.emulator: Optional[str] = None
        if self.host_arch != spec.linux_arch:
            self.emulator = which(spec.emulator)
            if not self.emulator:
                raise SandboxError(
                    f"Emulator '{spec.emulator}' required to run {spec.android_id} binaries "
                    f"on a {self.host_arch} host, but it is not on PATH"
                )

    def build_command(self, command: List[str]) -> List[str]:
        cmd = [self.proot, "-r", str(self.bootstrap.root)]
        if self.emulator:
            cmd.extend(["-q", self.emulator])
        cmd.extend(["-w", "/"])
        for bind in self.BINDS:
            cmd.extend(["-b", bind])
        cmd.extend(command)
        return cmd

    def run(self, command: List[str], timeout: float) -> CommandResult:
        cmd = self.build_command(command)
        env = os.environ.copy()
        env["PROOT_NO_SECCOMP"] = "1"
        start = time.time()

        try:
            proc = subprocess.Popen(
                cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                env=env,
            )
        except OSError as e:
            return CommandResult(command, returncode=-1, stderr=str(e), duration=time.time() - start)

        try:
            stdout, stderr = proc.communicate(timeout=timeout)
        except subprocess.TimeoutExpired:
            kill_process_tree(proc.pid)
            stdout, stderr = proc.communicate()
            return CommandResult(
                command,
                returncode=proc.returncode if proc.returncode is not None else -1,
                stdout=stdout or "",
                stderr=stderr or "",
                timed_out=True,
                duration=time.time() - start,
            )

        return CommandResult(
            command,
            returncode=proc.returncode,
            stdout=stdout or "",
            stderr=stderr or "",
            duration=time.time() - start,
        )


@dataclass
class TestCase:
    """One command of the compatibility suite."""

    __test__ = False

    name: str
    command: List[str]
    expected_output: Optional[str] = None


@dataclass
class TestOutcome:
    """Recorded result of one test case."""

    __test__ = False

    name: str
    command: List[str]
    passed: bool
    returncode: int
    timed_out: bool = False
    duration: float = 0.0
    output: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "command": " ".join(self.command),
            "passed": self.passed,
            "returncode": self.returncode,
            "timedOut": self.timed_out,
            "durationSeconds": round(self.duration, 3),
            "output": self.output,
        }


@dataclass
class TestReport:
    """Results of the compatibility suite for one bootstrap."""

    __test__ = False

    bootstrap_path: Path
    mode: str
    arch: str
    version: str
    tests: List[TestOutcome] = field(default_factory=list)
    skipped: bool = False
    skip_reason: str = ""
    test_date: str = field(default_factory=lambda: datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"))

    @property
    def tests_run(self) -> int:
        return len(self.tests)

    @property
    def tests_passed(self) -> int:
        return sum(1 for t in self.tests if t.passed)

    @property
    def tests_failed(self) -> int:
        return self.tests_run - self.tests_passed

    @property
    def proot_compatible(self) -> bool:
        if self.skipped:
            return False
        return self.tests_failed == 0

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "bootstrapPath": str(self.bootstrap_path),
            "buildMode": self.mode,
            "architecture": self.arch,
            "version": self.version,
            "testDate": self.test_date,
            "testsRun": self.tests_run,
            "testsPassed": self.tests_passed,
            "testsFailed": self.tests_failed,
            "prootCompatible": self.proot_compatible,
            "tests": [t.to_dict() for t in self.tests],
        }
        if self.skipped:
            data["skipped"] = True
            data["skipReason"] = self.skip_reason
        return data


@dataclass
class SandboxExempt(TestReport):
    """Skipped report for bootstraps that are never run in the sandbox."""

    skipped: bool = True
    skip_reason: str = "android-native binaries require the Android runtime and are not PRoot-compatible"


class SandboxTester:
    """Runs the compatibility suite against a bootstrap.

    Example usage:
        tester = SandboxTester(timeout=30, report_dir=Path("dist"))
        report = tester.run(bootstrap)
        print(report.tests_passed, report.proot_compatible)
    """

    def __init__(
        self,
        runner_factory: Optional[Callable[[Bootstrap], SandboxRunner]] = None,
        timeout: float = DEFAULT_TIMEOUT,
        report_dir: Optional[Path] = None,
        show_progress: bool = True,
    ):
        """Initialize tester.

        Args:
            runner_factory: Builds the sandbox for a bootstrap (default: ProotSandbox)
            timeout: Per-command timeout in seconds
            report_dir: Where the JSON report is written (default: next to the bootstrap)
            show_progress: Whether to print per-test results
        """
        self.runner_factory = runner_factory or ProotSandbox
        self.timeout = timeout
        self.report_dir = Path(report_dir) if report_dir else None
        self.show_progress = show_progress

    @staticmethod
    def test_suite(bootstrap: Bootstrap) -> List[TestCase]:
        """The ordered command suite, with fallbacks for missing programs."""
        bin_dir = bootstrap.bin_dir

        def present(name: str) -> bool:
            path = bin_dir / name
            return path.exists() or path.is_symlink()

        if present("bash"):
            version_cmd = ["/usr/bin/bash", "--version"]
        else:
            version_cmd = ["/usr/bin/sh", "-c", "echo $0"]

        if present("ls"):
            ls_cmd = ["/usr/bin/ls", "/usr/bin"]
        else:
            ls_cmd = ["/usr/bin/busybox", "ls", "/usr/bin"]

        return [
            TestCase("Shell execution", ["/usr/bin/sh", "-c", "echo test"], expected_output="test"),
            TestCase("Bash version", version_cmd),
            TestCase("List binaries", ls_cmd),
            TestCase(
                "File operations",
                ["/usr/bin/sh", "-c", "echo test > /tmp/test.txt && cat /tmp/test.txt"],
                expected_output="test",
            ),
            TestCase(
                "Environment variables",
                ["/usr/bin/sh", "-c", "export TEST=value && echo $TEST"],
                expected_output="value",
            ),
        ]

    def run(self, bootstrap: Bootstrap, runner: Optional[SandboxRunner] = None) -> TestReport:
        """Run the suite against a bootstrap and write its JSON report.

        Args:
            bootstrap: Assembled bootstrap
            runner: Sandbox to use (default: built by runner_factory)

        Returns:
            TestReport (a skipped SandboxExempt for android-native)

        Raises:
            SandboxError: If the sandbox cannot be set up
        """
        if bootstrap.build_mode is BuildMode.ANDROID_NATIVE:
            report: TestReport = SandboxExempt(bootstrap.root, bootstrap.mode, bootstrap.arch, bootstrap.version)
            if self.show_progress:
                print(f"      Skipping sandbox tests: {report.skip_reason}")
            self.write_report(report)
            return report

        if runner is None:
            runner = self.runner_factory(bootstrap)

        report = TestReport(bootstrap.root, bootstrap.mode, bootstrap.arch, bootstrap.version)
        for case in self.test_suite(bootstrap):
            outcome = self._run_case(runner, case)
            report.tests.append(outcome)
            if self.show_progress:
                marker = "✓" if outcome.passed else "✗"
                suffix = " (timed out)" if outcome.timed_out else ""
                print(f"      {marker} {case.name}{suffix}")

        self.write_report(report)
        logging.info(
            f"Sandbox tests for {bootstrap.name}: {report.tests_passed}/{report.tests_run} passed"
        )
        return report

    def _run_case(self, runner: SandboxRunner, case: TestCase) -> TestOutcome:
        try:
            result = runner.run(case.command, self.timeout)
        except KeyboardInterrupt as ke:
            from bootforge.interrupt_utils import handle_keyboard_interrupt_properly

            handle_keyboard_interrupt_properly(ke)
            raise  # Never reached, but satisfies type checker
        except Exception as e:
            logging.warning(f"Sandbox command '{case.name}' raised: {e}")
            return TestOutcome(case.name, case.command, passed=False, returncode=-1, output=str(e))

        passed = result.returncode == 0 and not result.timed_out
        if passed and case.expected_output is not None:
            passed = case.expected_output in result.stdout.split()
        output = (result.stdout + result.stderr).strip()
        return TestOutcome(
            case.name,
            case.command,
            passed=passed,
            returncode=result.returncode,
            timed_out=result.timed_out,
            duration=result.duration,
            output=output[-2000:],
        )

    def report_path(self, report: TestReport) -> Path:
        directory = self.report_dir or Path(report.bootstrap_path).parent
        return directory / f"test-report-{report.mode}-{report.arch}.json"

    def write_report(self, report: TestReport) -> Path:
        """Write the JSON test report."""
        path = self.report_path(report)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(report.to_dict(), indent=2) + "\n", encoding="utf-8")
        return path
