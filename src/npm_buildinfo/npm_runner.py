"""
Running the npm client.

Locates the npm executable and runs the handful of npm commands the
install/ci pipeline needs, each as an asyncio subprocess.
"""

import asyncio
import re
import shutil
import subprocess
from functools import total_ordering
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from .error_handling import (
    ErrorCategory,
    InstallProcessError,
    PrerequisiteError,
    get_error_handler,
)
from .structured_logging import get_command_logger

MIN_SUPPORTED_NPM_VERSION = "5.4.0"

_VERSION_PATTERN = re.compile(r"(\d+)(?:\.(\d+))?(?:\.(\d+))?")


@total_ordering
class NpmVersion:
    """A major.minor.patch npm version; pre-release suffixes are ignored."""

    def __init__(self, raw: str):
        match = _VERSION_PATTERN.search(raw or "")
        if not match:
            raise ValueError(f"Not a version: {raw!r}")
        self.raw = raw.strip()
        self.parts: Tuple[int, int, int] = tuple(int(part or 0) for part in match.groups())

    def __eq__(self, other):
        if not isinstance(other, NpmVersion):
            return NotImplemented
        return self.parts == other.parts

    def __lt__(self, other):
        if not isinstance(other, NpmVersion):
            return NotImplemented
        return self.parts < other.parts

    def __hash__(self):
        return hash(self.parts)

    def __repr__(self):
        return f"NpmVersion({self.raw!r})"

    def __str__(self):
        return self.raw

    def at_least(self, minimum: str) -> bool:
        return self >= NpmVersion(minimum)


class NpmExecutable:
    """Runs npm commands in a project directory."""

    def __init__(self, path: str, working_dir: Path, timeout_seconds: Optional[float] = 300):
        self.path = path
        self.working_dir = Path(working_dir)
        self.timeout_seconds = timeout_seconds
        self.error_handler = get_error_handler()

    @classmethod
    def locate(cls, working_dir: Path) -> "NpmExecutable":
        """Find npm on PATH."""
        npm_path = shutil.which("npm")
        if not npm_path:
            raise PrerequisiteError("could not find 'npm' executable")
        get_command_logger().debug("npm_executable_found", path=npm_path)
        return cls(npm_path, working_dir)

    async def _run(
        self,
        args: Sequence[str],
        capture_output: bool = True,
        timeout: Optional[float] = None,
    ) -> Tuple[str, str, int]:
        """
        Run npm with the given arguments.

        Returns:
            Tuple of (stdout, stderr, return_code)
        """
        command = [self.path] + [str(arg) for arg in args]
        process = None
        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                stdout=subprocess.PIPE if capture_output else None,
                stderr=subprocess.PIPE if capture_output else None,
                cwd=self.working_dir,
            )
            stdout_data, stderr_data = await asyncio.wait_for(
                process.communicate(), timeout=timeout
            )
        except asyncio.TimeoutError as e:
            if process is not None and process.returncode is None:
                try:
                    process.kill()
                except ProcessLookupError:
                    pass
                await process.wait()
            self.error_handler.warning(
                ErrorCategory.INSTALL,
                f"npm timed out after {timeout}s",
                "npm_runner",
                "_run",
                details={"args": list(args)},
            )
            raise InstallProcessError(f"npm {' '.join(args)} timed out") from e
        except OSError as e:
            self.error_handler.error(
                ErrorCategory.INSTALL,
                f"npm execution failed: {e}",
                "npm_runner",
                "_run",
                exception=e,
            )
            raise InstallProcessError(f"Failed running npm: {e}") from e

        stdout = stdout_data.decode("utf-8", errors="replace") if stdout_data else ""
        stderr = stderr_data.decode("utf-8", errors="replace") if stderr_data else ""
        return stdout, stderr, process.returncode or 0

    async def version(self) -> NpmVersion:
        stdout, stderr, code = await self._run(["--version"], timeout=self.timeout_seconds)
        if code != 0:
            raise PrerequisiteError(f"'npm --version' failed: {stderr.strip()}")
        return NpmVersion(stdout.strip())

    async def config_get(self, npm_args: Sequence[str], key: str) -> str:
        """Value of one npm config key, as npm resolves it for these args."""
        stdout, stderr, code = await self._run(
            ["config", "get", key] + list(npm_args), timeout=self.timeout_seconds
        )
        if code != 0:
            raise PrerequisiteError(f"'npm config get {key}' failed: {stderr.strip()}")
        return stdout.strip()

    async def config_list(self, npm_args: Sequence[str]) -> str:
        """'npm config list' as 'key = value' lines."""
        stdout, stderr, code = await self._run(
            ["config", "list", "--json=false"] + list(npm_args),
            timeout=self.timeout_seconds,
        )
        if code != 0:
            raise PrerequisiteError(f"'npm config list' failed: {stderr.strip()}")
        return stdout

    async def run_install_or_ci(self, command: str, npm_args: Sequence[str]) -> None:
        """Run 'npm install' or 'npm ci' with output going to the terminal."""
        _, _, code = await self._run([command] + list(npm_args), capture_output=False)
        if code != 0:
            raise InstallProcessError(f"npm {command} failed with exit code {code}", code)

    async def list_dependencies(
        self, npm_args: Sequence[str], scope: str
    ) -> Tuple[str, str, int]:
        """
        Run 'npm ls --json --all --<scope>'.

        The exit code and stderr are returned, not raised: npm ls exits
        non-zero on problems such as extraneous or missing packages while
        still printing a usable tree.
        """
        args: List[str] = ["ls", "--json"] + list(npm_args) + ["--all", f"--{scope}"]
        return await self._run(args, timeout=self.timeout_seconds)
