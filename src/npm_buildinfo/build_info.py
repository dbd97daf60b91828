"""
Local persistence of partial build-info.

Each install/ci run that collects build-info writes one partial file under
<builds_dir>/<build name>_<build number>/partials/. A later publish step
merges the partials of a build into its full build-info.
"""

import json
import re
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from .error_handling import ErrorCategory, NpmBuildInfoError, get_error_handler

_UNSAFE_PATH_CHARS = re.compile(r"[^A-Za-z0-9._-]")


@dataclass(frozen=True)
class BuildConfiguration:
    """Identification of the build a run contributes to."""

    build_name: str = ""
    build_number: str = ""
    module: str = ""

    @property
    def is_collecting(self) -> bool:
        return bool(self.build_name and self.build_number)


def build_dir_name(build_name: str, build_number: str) -> str:
    return _UNSAFE_PATH_CHARS.sub("_", f"{build_name}_{build_number}")


class BuildInfoStore:
    """Writes partial build-info documents as JSON."""

    def __init__(self, builds_dir: Path):
        self.builds_dir = Path(builds_dir)
        self.error_handler = get_error_handler()

    def partials_dir(self, build_name: str, build_number: str) -> Path:
        return self.builds_dir / build_dir_name(build_name, build_number) / "partials"

    def save_dependencies(
        self,
        build: BuildConfiguration,
        dependencies: List[Dict[str, Any]],
        timestamp: Optional[datetime] = None,
    ) -> Path:
        """
        Save the module's resolved dependencies as one partial.

        Args:
            build: Build name, number and module id
            dependencies: Resolved dependencies as build-info dicts
            timestamp: Time of the run; now when omitted

        Returns:
            Path: The written partial file
        """
        timestamp = timestamp or datetime.now(timezone.utc)
        partial = {
            "buildName": build.build_name,
            "buildNumber": build.build_number,
            "timestamp": int(timestamp.timestamp() * 1000),
            "started": timestamp.isoformat(),
            "moduleId": build.module,
            "moduleType": "npm",
            "dependencies": dependencies,
        }

        output_dir = self.partials_dir(build.build_name, build.build_number)
        output_file = output_dir / f"{time.time_ns()}.json"
        try:
            output_dir.mkdir(parents=True, exist_ok=True)
            with open(output_file, "w", encoding="utf-8") as f:
                json.dump(partial, f, indent=2, ensure_ascii=False)
        except OSError as e:
            self.error_handler.error(
                ErrorCategory.FILESYSTEM,
                f"Failed to save build-info: {e}",
                "build_info",
                "save_dependencies",
                exception=e,
            )
            raise NpmBuildInfoError(f"Failed saving build-info to {output_file}: {e}") from e

        return output_file

