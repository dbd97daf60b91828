"""
Project .npmrc generation and backup.

Translates the effective npm configuration ('npm config list') into a
project .npmrc that redirects resolution to the private registry, and
manages the backup/restore of any .npmrc the project already had.
"""

import logging
import os
import shutil
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Optional

from .error_handling import (
    ConfigMutationError,
    ErrorCategory,
    NpmrcRestoreError,
    get_error_handler,
)

logger = logging.getLogger(__name__)

NPMRC_FILE_NAME = ".npmrc"
NPMRC_BACKUP_FILE_NAME = "jfrog.npmrc.backup"

# Keys re-injected explicitly, never copied from the dump
RESERVED_KEYS = {"registry", "metrics-registry", "json"}


class TypeRestriction(Enum):
    """Which dependency types the install actually pulled."""

    DEFAULT = "default"
    ALL = "all"
    DEV_ONLY = "dev-only"
    PROD_ONLY = "prod-only"


@dataclass
class NpmrcDocument:
    """Ordered .npmrc directives plus the restriction found while scanning."""

    directives: List[str] = field(default_factory=list)
    type_restriction: TypeRestriction = TypeRestriction.DEFAULT

    def render(self) -> str:
        return "".join(line if line.endswith("\n") else line + "\n" for line in self.directives)


def is_valid_key(key: str) -> bool:
    """True for keys that may be copied into the generated .npmrc."""
    return (
        not key.startswith("//")
        and not key.startswith(";")
        and not key.startswith("@")
        and key not in RESERVED_KEYS
    )


def expand_array_value(key: str, array_value: str) -> List[str]:
    """Turn 'key = [a,b]' into 'key[] = a', 'key[] = b'; '[]' yields nothing."""
    if array_value == "[]":
        return []
    values = array_value[1:-1]
    return [f"{key}[] = {value}" for value in values.split(",")]


def update_type_restriction(
    current: TypeRestriction, key: str, value: str
) -> TypeRestriction:
    """
    Classify the dependency type restriction from one config entry.

    'omit' (npm 7+) always wins. The deprecated 'only' and 'production'
    keys only apply while nothing was set, because older npm lists config
    in descending priority order.
    """
    if key == "omit":
        return TypeRestriction.PROD_ONLY if "dev" in value else TypeRestriction.ALL

    if current != TypeRestriction.DEFAULT:
        return current

    if key == "only":
        if "prod" in value:
            return TypeRestriction.PROD_ONLY
        if "dev" in value:
            return TypeRestriction.DEV_ONLY
    elif key == "production" and "true" in value:
        return TypeRestriction.PROD_ONLY

    return current


def translate_npm_config(
    config_list: str, registry: str, npm_auth: str, json_output: bool
) -> NpmrcDocument:
    """
    Build the project .npmrc from 'npm config list' output.

    Args:
        config_list: Newline-delimited 'key = value' dump
        registry: Private registry URL every package is resolved through
        npm_auth: Auth directive block for the registry
        json_output: Value to write for the 'json' key

    Returns:
        NpmrcDocument: Directives in write order and the type restriction
    """
    document = NpmrcDocument()

    for line in config_list.splitlines():
        if not line.strip():
            continue

        key, separator, raw_value = line.partition("=")
        key = key.strip()

        if separator and key and is_valid_key(key):
            value = raw_value.strip()
            if value.startswith("[") and value.endswith("]"):
                document.directives.extend(expand_array_value(key, value))
            else:
                document.directives.append(line)
            document.type_restriction = update_type_restriction(
                document.type_restriction, key, value
            )
        elif key.startswith("@"):
            # Scoped registries resolve through the private registry too
            document.directives.append(f"{key} = {registry}")

    document.directives.append(f"json = {str(json_output).lower()}")
    document.directives.append(f"registry = {registry}")
    if npm_auth:
        document.directives.append(npm_auth)
    return document


class NpmrcBackup:
    """
    Acquire/commit/restore handle for the project .npmrc.

    acquire() snapshots any existing .npmrc to the backup path, commit()
    writes the generated document, restore() puts the original bytes back
    or removes the generated file when none existed.
    """

    def __init__(self, working_dir: Path):
        self.npmrc_path = Path(working_dir) / NPMRC_FILE_NAME
        self.backup_path = Path(working_dir) / NPMRC_BACKUP_FILE_NAME
        self._had_original: Optional[bool] = None

    @property
    def acquired(self) -> bool:
        return self._had_original is not None

    def acquire(self) -> None:
        """Back up the existing .npmrc, if any."""
        try:
            if self.npmrc_path.exists():
                shutil.copy2(self.npmrc_path, self.backup_path)
                self._had_original = True
                logger.debug("Backed up %s to %s", self.npmrc_path, self.backup_path)
            else:
                self._had_original = False
        except OSError as e:
            get_error_handler().error(
                ErrorCategory.CONFIG_MUTATION,
                "Could not back up project .npmrc",
                "npmrc",
                "acquire",
                exception=e,
            )
            raise ConfigMutationError(f"Failed backing up {self.npmrc_path}: {e}") from e

    def commit(self, document: NpmrcDocument) -> None:
        """Replace the project .npmrc with the generated document."""
        if not self.acquired:
            raise ConfigMutationError("The project .npmrc must be backed up before it is replaced")
        try:
            if self.npmrc_path.exists():
                logger.debug("Removing existing .npmrc file")
                self.npmrc_path.unlink()
            fd = os.open(self.npmrc_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(document.render())
        except OSError as e:
            get_error_handler().error(
                ErrorCategory.CONFIG_MUTATION,
                "Could not write project .npmrc",
                "npmrc",
                "commit",
                exception=e,
            )
            raise ConfigMutationError(f"Failed writing {self.npmrc_path}: {e}") from e

    def restore(self) -> None:
        """Return the .npmrc to its pre-acquire state. Safe to call repeatedly."""
        if not self.acquired:
            return
        try:
            if self._had_original:
                if self.backup_path.exists():
                    # os.replace keeps the original bytes and drops the backup
                    os.replace(self.backup_path, self.npmrc_path)
            elif self.npmrc_path.exists():
                self.npmrc_path.unlink()
        except OSError as e:
            raise NpmrcRestoreError(
                self.restore_error_prefix() + str(e)
            ) from e
        self._had_original = None

    def restore_error_prefix(self) -> str:
        return (
            "Error occurred while restoring project .npmrc file. "
            f"Delete '{self.npmrc_path}' and move '{self.backup_path}' (if exists) "
            f"to '{self.npmrc_path}' in order to restore the project. Failure cause: \n"
        )
