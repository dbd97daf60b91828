"""Reading the project's package.json."""

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .error_handling import ErrorCategory, PrerequisiteError, get_error_handler

PACKAGE_JSON_FILE_NAME = "package.json"


@dataclass(frozen=True)
class PackageInfo:
    """Name, version and scope of the npm project being built."""

    name: str
    version: str
    scope: Optional[str] = None

    @classmethod
    def from_package_name(cls, full_name: str, version: str) -> "PackageInfo":
        """Split '@scope/name' into its scope and bare name."""
        if full_name.startswith("@") and "/" in full_name:
            scope, name = full_name.split("/", 1)
            return cls(name=name, version=version, scope=scope)
        return cls(name=full_name, version=version)

    @property
    def full_name(self) -> str:
        return f"{self.scope}/{self.name}" if self.scope else self.name

    def build_info_module_id(self) -> str:
        """Module id for build-info: '[scope:]name:version' with '@' dropped."""
        module_id = f"{self.name}:{self.version}"
        if self.scope:
            return f"{self.scope.lstrip('@')}:{module_id}"
        return module_id


def read_package_info(working_dir: Path) -> PackageInfo:
    """
    Read name and version from <working_dir>/package.json.

    Raises:
        PrerequisiteError: If the file is missing, unreadable or lacks a name
    """
    package_json = Path(working_dir) / PACKAGE_JSON_FILE_NAME
    error_handler = get_error_handler()

    try:
        with open(package_json, encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError as e:
        raise PrerequisiteError(f"Could not find {package_json}") from e
    except (OSError, json.JSONDecodeError) as e:
        error_handler.error(
            ErrorCategory.PREREQUISITE,
            f"Invalid package.json: {e}",
            "package_info",
            "read_package_info",
            exception=e,
            details={"file_path": str(package_json)},
        )
        raise PrerequisiteError(f"Failed reading {package_json}: {e}") from e

    if not isinstance(data, dict) or not data.get("name"):
        raise PrerequisiteError(f"{package_json} must contain a 'name' field")

    return PackageInfo.from_package_name(str(data["name"]), str(data.get("version", "")))
