"""
Artifactory client for npm resolution and checksum lookups.

Implements a rate-limited, retrying async client that resolves the npm
registry URL and auth for a repository, looks up artifact checksums by npm
package name and version, and reads the dependencies recorded by the latest
run of a build.
"""

import asyncio
import json
import time
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import Any, Dict, Optional
from urllib.parse import quote

import httpx
from httpx import HTTPStatusError, RequestError

from .cli_config import ArtifactoryConfig, get_config
from .dependency import Checksum, RecordedDependency
from .error_handling import RegistryError, log_network_error
from .structured_logging import get_registry_logger, log_registry_lookup

RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}


@dataclass(frozen=True)
class ServerDetails:
    """Connection details and credentials for one Artifactory instance."""

    url: str
    user: Optional[str] = None
    password: Optional[str] = None
    access_token: Optional[str] = None
    ssh_key_path: Optional[str] = None

    def __post_init__(self):
        if not self.url or not isinstance(self.url, str):
            raise ValueError("url must be a non-empty string")
        object.__setattr__(self, "url", self.url.rstrip("/") + "/")

    @classmethod
    def from_config(cls, config: ArtifactoryConfig) -> "ServerDetails":
        return cls(
            url=config.url,
            user=config.user,
            password=config.password,
            access_token=config.access_token,
            ssh_key_path=config.ssh_key_path,
        )

    @property
    def uses_ssh_auth(self) -> bool:
        return bool(self.ssh_key_path)

    def get_auth(self) -> Optional[httpx.Auth]:
        """Basic auth for user/password; tokens travel as a header."""
        if not self.access_token and self.user and self.password:
            return httpx.BasicAuth(self.user, self.password)
        return None

    def get_auth_headers(self) -> Dict[str, str]:
        if self.access_token:
            return {"Authorization": f"Bearer {self.access_token}"}
        return {}

    def get_sanitized_config(self) -> Dict[str, Any]:
        """Configuration with credentials redacted, for logging."""
        return {
            "url": self.url,
            "user": self.user,
            "has_password": bool(self.password),
            "has_access_token": bool(self.access_token),
            "uses_ssh_auth": self.uses_ssh_auth,
        }


@dataclass(frozen=True)
class ChecksumLookupResult:
    """Result of looking up one npm package version in the registry."""

    name: str
    version: str
    found: bool = False
    checksum: Optional[Checksum] = None
    file_type: Optional[str] = None
    error: Optional[str] = None
    status_code: Optional[int] = None
    duration_ms: Optional[int] = None


class RateLimiter:
    """Rate limiter shared by every task that uses one client."""

    def __init__(self, requests_per_second: float = 20.0):
        self.min_interval = 1.0 / requests_per_second
        self.last_request_time = 0.0
        self._lock: Optional[asyncio.Lock] = None

    @property
    def lock(self) -> asyncio.Lock:
        # Created on first use so the lock belongs to the running loop
        if self._lock is None:
            self._lock = asyncio.Lock()
        return self._lock

    async def acquire(self) -> None:
        """Wait if necessary to respect rate limits."""
        async with self.lock:
            time_since_last = time.monotonic() - self.last_request_time
            if time_since_last < self.min_interval:
                await asyncio.sleep(self.min_interval - time_since_last)
            self.last_request_time = time.monotonic()


def build_npm_aql_query(name: str, version: str) -> str:
    """AQL query matching an npm package by its name and version properties."""
    criteria = json.dumps({"@npm.name": name, "@npm.version": version})
    return (
        f"items.find({criteria})"
        '.include("name","repo","path","actual_sha1","actual_md5","sha256")'
    )


class ArtifactoryClient:
    """
    Async client for the Artifactory REST API.

    Uses the async context manager pattern: the httpx.AsyncClient is created
    on entry and closed on exit, and is shared by all concurrent lookups.
    """

    def __init__(
        self,
        server: ServerDetails,
        rate_limit_rps: Optional[float] = None,
        retry_attempts: Optional[int] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        network = get_config().network
        self.server = server
        self.rate_limiter = RateLimiter(rate_limit_rps or network.rate_limit)
        self.retry_attempts = (
            network.retry_attempts if retry_attempts is None else retry_attempts
        )
        self.timeout = httpx.Timeout(network.read_timeout, connect=network.connect_timeout)
        self.verify = not network.insecure_tls
        self.transport = transport
        self.client: Optional[httpx.AsyncClient] = None

        self._headers = {
            "User-Agent": network.user_agent,
            "Accept": "application/json",
        }
        self._headers.update(server.get_auth_headers())

    async def __aenter__(self):
        self.client = httpx.AsyncClient(
            base_url=self.server.url,
            timeout=self.timeout,
            headers=self._headers,
            auth=self.server.get_auth(),
            verify=self.verify,
            transport=self.transport,
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if self.client:
            await self.client.aclose()
            self.client = None

    def npm_registry_url(self, repo: str) -> str:
        return f"{self.server.url}api/npm/{repo}"

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        """Send a request, retrying transport errors and retryable statuses."""
        if self.client is None:
            raise RegistryError("HTTP client not initialized - use within async context manager")

        last_error: Optional[Exception] = None
        for attempt in range(self.retry_attempts + 1):
            await self.rate_limiter.acquire()
            try:
                response = await self.client.request(method, path, **kwargs)
            except RequestError as e:
                last_error = e
            else:
                if response.status_code not in RETRYABLE_STATUS_CODES:
                    return response
                last_error = HTTPStatusError(
                    f"HTTP {response.status_code}", request=response.request, response=response
                )

            if attempt < self.retry_attempts:
                await asyncio.sleep(min(0.5 * 2**attempt, 5.0))

        if isinstance(last_error, HTTPStatusError):
            return last_error.response
        log_network_error(
            f"Request failed after {self.retry_attempts + 1} attempts",
            "registry_clients",
            "_request",
            url=f"{self.server.url}{path}",
            exception=last_error,
        )
        raise RegistryError(f"Network error: {last_error}")

    async def repository_exists(self, repo: str) -> bool:
        """Check that the resolution repository exists."""
        response = await self._request("GET", f"api/repositories/{quote(repo, safe='')}")
        if response.status_code in (400, 404):
            return False
        self._raise_for_status(response, f"checking repository '{repo}'")
        return True

    async def get_npm_auth(self) -> str:
        """Fetch the npm auth block that Artifactory issues for basic credentials."""
        response = await self._request("GET", "api/npm/auth", headers={"Accept": "text/plain"})
        self._raise_for_status(response, "fetching npm auth")
        return response.text.strip() + "\n"

    async def npm_auth_directive(self) -> str:
        """The .npmrc auth lines for the configured credentials."""
        if self.server.access_token:
            return f"_authToken = {self.server.access_token}\nalways-auth = true\n"
        return await self.get_npm_auth()

    async def find_npm_checksum(self, name: str, version: str) -> ChecksumLookupResult:
        """
        Look up the checksums of an npm package version.

        Returns:
            ChecksumLookupResult: found with checksum, not found (no error),
            or an error description for network/auth/server failures
        """
        start_time = time.monotonic()
        try:
            response = await self._request(
                "POST",
                "api/search/aql",
                content=build_npm_aql_query(name, version),
                headers={"Content-Type": "text/plain"},
            )
            duration_ms = int((time.monotonic() - start_time) * 1000)
            response.raise_for_status()
            results = response.json().get("results", [])
        except HTTPStatusError as e:
            return ChecksumLookupResult(
                name=name,
                version=version,
                error=f"HTTP {e.response.status_code}: {e.response.text[:100]}",
                status_code=e.response.status_code,
            )
        except (RegistryError, ValueError) as e:
            return ChecksumLookupResult(name=name, version=version, error=str(e))

        log_registry_lookup(name, version, bool(results), duration_ms)
        if not results:
            return ChecksumLookupResult(
                name=name, version=version, found=False, duration_ms=duration_ms
            )

        item = results[0]
        checksum = Checksum(
            sha1=item.get("actual_sha1"),
            md5=item.get("actual_md5"),
            sha256=item.get("sha256"),
        )
        suffix = PurePosixPath(item.get("name", "")).suffix
        return ChecksumLookupResult(
            name=name,
            version=version,
            found=not checksum.is_empty(),
            checksum=None if checksum.is_empty() else checksum,
            file_type=suffix[1:] if suffix else None,
            duration_ms=duration_ms,
        )

    async def get_latest_build_dependencies(
        self, build_name: str
    ) -> Dict[str, RecordedDependency]:
        """
        Dependencies recorded by the latest run of a build, keyed by name:version.

        A build that was never published yields an empty mapping.
        """
        logger = get_registry_logger()
        if not build_name:
            return {}

        encoded_name = quote(build_name, safe="")
        response = await self._request("GET", f"api/build/{encoded_name}")
        if response.status_code == 404:
            logger.debug("previous_build_not_found", build_name=build_name)
            return {}
        self._raise_for_status(response, f"listing runs of build '{build_name}'")

        runs = response.json().get("buildsNumbers") or []
        if not runs:
            return {}
        latest = max(runs, key=lambda run: run.get("started", ""))
        build_number = latest.get("uri", "").lstrip("/")

        response = await self._request("GET", f"api/build/{encoded_name}/{quote(build_number, safe='')}")
        if response.status_code == 404:
            return {}
        self._raise_for_status(response, f"reading build '{build_name}/{build_number}'")

        recorded: Dict[str, RecordedDependency] = {}
        modules = response.json().get("buildInfo", {}).get("modules") or []
        for module in modules:
            for dep in module.get("dependencies") or []:
                dep_id = dep.get("id")
                if not dep_id:
                    continue
                checksum = Checksum(
                    sha1=dep.get("sha1"), md5=dep.get("md5"), sha256=dep.get("sha256")
                )
                recorded[dep_id] = RecordedDependency(
                    id=dep_id,
                    checksum=None if checksum.is_empty() else checksum,
                    file_type=dep.get("type"),
                )

        logger.info(
            "previous_build_loaded",
            build_name=build_name,
            build_number=build_number,
            total_dependencies=len(recorded),
        )
        return recorded

    def _raise_for_status(self, response: httpx.Response, action: str) -> None:
        if response.is_success:
            return
        log_network_error(
            f"Artifactory returned HTTP {response.status_code} while {action}",
            "registry_clients",
            "_raise_for_status",
            url=str(response.request.url),
            status_code=response.status_code,
        )
        raise RegistryError(
            f"HTTP {response.status_code} while {action}: {response.text[:200]}",
            status_code=response.status_code,
        )
