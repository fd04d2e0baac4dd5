"""Playwright CLI runner that executes tests and captures their results."""

import asyncio
import logging
import os
import re
import shlex
import shutil
import subprocess
import tempfile
import time
from dataclasses import dataclass, field, replace
from pathlib import Path

from ..config import RunnerConfig
from ..models import RunnerResult

logger = logging.getLogger(__name__)

DEFAULT_RUN_TIMEOUT_S = 600
REPORT_FILE_NAME = "results.json"


@dataclass
class RunnerOptions:
    """Options for a single Playwright invocation."""

    test_file: str | None = None
    grep: str | None = None
    project: str | None = None
    workers: int | None = None
    retries: int | None = None
    repeat_each: int | None = None
    fail_on_flaky: bool = False
    timeout: int | None = None  # per-test timeout, ms
    reporter: str | None = None
    output_dir: str | None = None
    env: dict[str, str] = field(default_factory=dict)
    cwd: str | None = None
    headed: bool = False
    debug: bool = False
    update_snapshots: bool = False


class PlaywrightRunner:
    """Run Playwright tests as a subprocess."""

    def __init__(self, config: RunnerConfig | None = None):
        self.config = config or RunnerConfig()
        self.command = list(self.config.command)
        self._scratch_dir: Path | None = None

    def with_defaults(self, options: RunnerOptions) -> RunnerOptions:
        """Fill unset options from the runner configuration."""
        return replace(
            options,
            project=options.project or self.config.project,
            workers=options.workers if options.workers is not None else self.config.workers,
            retries=options.retries if options.retries is not None else self.config.retries,
            timeout=options.timeout if options.timeout is not None else self.config.timeout,
            output_dir=options.output_dir or (
                str(self.config.output_dir) if self.config.output_dir else None
            ),
            cwd=options.cwd or (str(self.config.cwd) if self.config.cwd else None),
        )

    def is_available(self) -> bool:
        """Check whether the Playwright CLI executable is on PATH."""
        return bool(self.command) and shutil.which(self.command[0]) is not None

    def version(self, cwd: str | None = None) -> str | None:
        """Return the Playwright version string, or None if unavailable."""
        if not self.is_available():
            return None
        try:
            result = subprocess.run(
                [*self.command, "--version"],
                capture_output=True,
                cwd=cwd,
                text=True,
                timeout=60,
            )
        except (OSError, subprocess.TimeoutExpired):
            return None
        if result.returncode != 0:
            return None
        return result.stdout.strip()

    @staticmethod
    def build_args(options: RunnerOptions) -> list[str]:
        """Build `playwright test` arguments from options."""
        args = ["test"]

        if options.test_file:
            args.append(options.test_file)
        if options.grep:
            args.extend(["--grep", options.grep])
        if options.project:
            args.extend(["--project", options.project])
        if options.workers is not None:
            args.extend(["--workers", str(options.workers)])
        if options.retries is not None:
            args.extend(["--retries", str(options.retries)])
        if options.repeat_each is not None:
            args.extend(["--repeat-each", str(options.repeat_each)])
        if options.fail_on_flaky:
            args.append("--fail-on-flaky-tests")
        if options.timeout is not None:
            args.extend(["--timeout", str(options.timeout)])
        if options.reporter:
            args.extend(["--reporter", options.reporter])
        if options.output_dir:
            args.extend(["--output", options.output_dir])
        if options.headed:
            args.append("--headed")
        if options.debug:
            args.append("--debug")
        if options.update_snapshots:
            args.append("--update-snapshots")

        return args

    def run(self, options: RunnerOptions | None = None) -> RunnerResult:
        """Run tests and block until Playwright exits or times out."""
        options = self.with_defaults(options or RunnerOptions())

        if not self.is_available():
            return self._unavailable_result()

        argv, env, report_path = self._prepare(options)
        command = shlex.join(argv)
        logger.info("Running %s", command)
        start = time.monotonic()

        try:
            result = subprocess.run(
                argv,
                capture_output=True,
                cwd=options.cwd,
                text=True,
                env=env,
                timeout=self._run_timeout(options),
            )
        except subprocess.TimeoutExpired as e:
            logger.warning("Playwright run timed out after %ss", e.timeout)
            return RunnerResult(
                success=False,
                exit_code=1,
                stdout=_as_text(e.stdout),
                stderr=f"Playwright run timed out after {e.timeout}s",
                duration=_elapsed_ms(start),
                command=command,
                report_path=_existing(report_path),
            )
        except OSError as e:
            return RunnerResult(
                success=False,
                exit_code=1,
                stdout="",
                stderr=str(e),
                duration=_elapsed_ms(start),
                command=command,
            )

        return RunnerResult(
            success=result.returncode == 0,
            exit_code=result.returncode,
            stdout=result.stdout or "",
            stderr=result.stderr or "",
            duration=_elapsed_ms(start),
            command=command,
            report_path=_existing(report_path),
        )

    async def run_async(self, options: RunnerOptions | None = None) -> RunnerResult:
        """Run tests without blocking the event loop."""
        options = self.with_defaults(options or RunnerOptions())

        if not self.is_available():
            return self._unavailable_result()

        argv, env, report_path = self._prepare(options)
        command = shlex.join(argv)
        logger.info("Running %s", command)
        start = time.monotonic()

        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                cwd=options.cwd,
                env=env,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            return RunnerResult(
                success=False,
                exit_code=1,
                stdout="",
                stderr=str(e),
                duration=_elapsed_ms(start),
                command=command,
            )

        timeout = self._run_timeout(options)
        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            logger.warning("Playwright run timed out after %ss", timeout)
            return RunnerResult(
                success=False,
                exit_code=1,
                stdout="",
                stderr=f"Playwright run timed out after {timeout}s",
                duration=_elapsed_ms(start),
                command=command,
                report_path=_existing(report_path),
            )

        exit_code = process.returncode if process.returncode is not None else 1
        return RunnerResult(
            success=exit_code == 0,
            exit_code=exit_code,
            stdout=_as_text(stdout),
            stderr=_as_text(stderr),
            duration=_elapsed_ms(start),
            command=command,
            report_path=_existing(report_path),
        )

    def run_test_file(self, test_file: Path, options: RunnerOptions | None = None) -> RunnerResult:
        """Run a single test file."""
        if not test_file.exists():
            return RunnerResult(
                success=False,
                exit_code=1,
                stdout="",
                stderr=f"Test file not found: {test_file}",
                duration=0,
                command="",
            )

        return self.run(replace(options or RunnerOptions(), test_file=str(test_file)))

    def run_journey_tests(self, journey_id: str, options: RunnerOptions | None = None) -> RunnerResult:
        """Run every test tagged with the journey id."""
        return self.run(replace(options or RunnerOptions(), grep=f"@{journey_id}"))

    def get_test_count(self, test_file: str, cwd: str | None = None) -> int:
        """Count tests in a file using `playwright test --list`."""
        try:
            result = subprocess.run(
                [*self.command, "test", "--list", test_file],
                capture_output=True,
                cwd=cwd,
                text=True,
                timeout=DEFAULT_RUN_TIMEOUT_S,
            )
        except (OSError, subprocess.TimeoutExpired):
            return 0

        if result.returncode != 0:
            return 0

        if match := re.search(r"Listing (\d+) tests?", result.stdout or ""):
            return int(match.group(1))
        return 0

    def _prepare(self, options: RunnerOptions) -> tuple[list[str], dict[str, str], Path]:
        """Resolve argv, environment and JSON report location."""
        report_dir = Path(options.output_dir) if options.output_dir else self.scratch_dir()
        report_dir.mkdir(parents=True, exist_ok=True)
        report_path = report_dir / REPORT_FILE_NAME
        # A stale report from a previous run must never be mistaken for this one
        report_path.unlink(missing_ok=True)

        reporter = options.reporter or "line"
        if "json" not in reporter.split(","):
            reporter = f"json,{reporter}"

        argv = [*self.command, *self.build_args(replace(options, reporter=reporter))]
        env = {
            **os.environ,
            **options.env,
            "PLAYWRIGHT_JSON_OUTPUT_NAME": str(report_path),
        }
        return argv, env, report_path

    def scratch_dir(self) -> Path:
        """Report directory reused by every run without an output_dir."""
        if self._scratch_dir is None or not self._scratch_dir.exists():
            self._scratch_dir = Path(tempfile.mkdtemp(prefix="journey-warden-verify-"))
        return self._scratch_dir

    def cleanup(self) -> None:
        """Remove the scratch report directory, if one was created."""
        if self._scratch_dir is not None:
            shutil.rmtree(self._scratch_dir, ignore_errors=True)
            self._scratch_dir = None

    @staticmethod
    def _run_timeout(options: RunnerOptions) -> float:
        if options.timeout:
            return options.timeout * 10 / 1000
        return DEFAULT_RUN_TIMEOUT_S

    def _unavailable_result(self) -> RunnerResult:
        logger.error("Playwright CLI not found: %s", " ".join(self.command))
        return RunnerResult(
            success=False,
            exit_code=1,
            stdout="",
            stderr="Playwright is not installed",
            duration=0,
            command=" ".join([*self.command, "test"]),
        )


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


def _existing(path: Path) -> str | None:
    return str(path) if path.exists() else None


def _as_text(data: bytes | str | None) -> str:
    if data is None:
        return ""
    if isinstance(data, bytes):
        return data.decode("utf-8", errors="replace")
    return data
