"""
Shared fixtures for npm-buildinfo tests.
"""

import json
import os
from typing import Dict, List, Optional, Tuple

import pytest

from npm_buildinfo import cli_config
from npm_buildinfo.dependency import Checksum
from npm_buildinfo.npm_runner import NpmVersion
from npm_buildinfo.registry_clients import ChecksumLookupResult


@pytest.fixture(autouse=True)
def default_config(monkeypatch):
    """Isolate every test from config files and NPM_BUILDINFO_* variables."""
    config = cli_config.ComprehensiveConfig()
    config.network.rate_limit = 1000.0
    monkeypatch.setattr(cli_config, "_global_config", config)
    for key in list(os.environ):
        if key.startswith("NPM_BUILDINFO_"):
            monkeypatch.delenv(key)
    return config


@pytest.fixture
def project_dir(tmp_path):
    """An npm project directory with a package.json."""
    package_json = {"name": "app", "version": "1.0.0"}
    (tmp_path / "package.json").write_text(json.dumps(package_json), encoding="utf-8")
    return tmp_path


class FakeRegistryClient:
    """Stands in for ArtifactoryClient in enrichment and command tests."""

    def __init__(
        self,
        checksums: Optional[Dict[str, Checksum]] = None,
        errors: Optional[Dict[str, str]] = None,
        previous_build: Optional[Dict] = None,
        repository_exists: bool = True,
    ):
        self.checksums = checksums or {}
        self.errors = errors or {}
        self.previous_build = previous_build or {}
        self.exists = repository_exists
        self.lookups: List[Tuple[str, str]] = []
        self.server = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        return None

    def npm_registry_url(self, repo: str) -> str:
        return f"https://acme.jfrog.io/artifactory/api/npm/{repo}"

    async def repository_exists(self, repo: str) -> bool:
        return self.exists

    async def npm_auth_directive(self) -> str:
        return "_authToken = secret-token\nalways-auth = true\n"

    async def find_npm_checksum(self, name: str, version: str) -> ChecksumLookupResult:
        self.lookups.append((name, version))
        key = f"{name}:{version}"
        if key in self.errors:
            return ChecksumLookupResult(name=name, version=version, error=self.errors[key])
        if key in self.checksums:
            return ChecksumLookupResult(
                name=name,
                version=version,
                found=True,
                checksum=self.checksums[key],
                file_type="tgz",
            )
        return ChecksumLookupResult(name=name, version=version, found=False)

    async def get_latest_build_dependencies(self, build_name: str):
        return dict(self.previous_build)


class FakeNpm:
    """Stands in for NpmExecutable; records the commands it was asked to run."""

    def __init__(
        self,
        version: str = "8.19.2",
        json_value: str = "false",
        config_list: str = "cache = /tmp/npm-cache\n",
        ls_outputs: Optional[Dict[str, str]] = None,
        install_error: Optional[Exception] = None,
        working_dir=None,
    ):
        self.version_string = version
        self.json_value = json_value
        self.config_list_output = config_list
        self.ls_outputs = ls_outputs or {}
        self.install_error = install_error
        self.working_dir = working_dir
        self.calls: List[Tuple] = []
        self.npmrc_during_install: Optional[str] = None

    async def version(self):
        return NpmVersion(self.version_string)

    async def config_get(self, npm_args, key):
        self.calls.append(("config_get", key))
        return self.json_value

    async def config_list(self, npm_args):
        self.calls.append(("config_list",))
        return self.config_list_output

    async def run_install_or_ci(self, command, npm_args):
        self.calls.append(("run", command, tuple(npm_args)))
        if self.working_dir is not None:
            npmrc = self.working_dir / ".npmrc"
            self.npmrc_during_install = npmrc.read_text() if npmrc.exists() else None
        if self.install_error is not None:
            raise self.install_error

    async def list_dependencies(self, npm_args, scope):
        self.calls.append(("ls", scope))
        return self.ls_outputs.get(scope, ""), "", 0


@pytest.fixture
def fake_registry():
    return FakeRegistryClient


@pytest.fixture
def fake_npm():
    return FakeNpm
