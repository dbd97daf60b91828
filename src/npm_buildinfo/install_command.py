"""
The npm install/ci command with build-info collection.

Runs npm install or ci against the Artifactory npm repository by writing a
temporary project .npmrc, then optionally records the installed dependency
tree, with checksums, as a partial build-info.
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Tuple

from .build_info import BuildConfiguration, BuildInfoStore
from .checksum_enricher import ChecksumEnricher, EnrichmentStats
from .cli_config import get_config
from .dependency import DependencyGraph, Scope
from .error_handling import (
    DoubleFailureError,
    ErrorCategory,
    NpmBuildInfoError,
    NpmrcRestoreError,
    PrerequisiteError,
    get_error_handler,
    log_credential_error,
    log_tree_listing_warning,
)
from .manifest import ManifestAssembler, ResolvedManifest
from .npm_runner import MIN_SUPPORTED_NPM_VERSION, NpmExecutable, NpmVersion
from .npmrc import NpmrcBackup, TypeRestriction, translate_npm_config
from .package_info import PackageInfo, read_package_info
from .registry_clients import ArtifactoryClient, ServerDetails
from .reporting import BuildInfoReporter
from .structured_logging import (
    clear_run_context,
    get_command_logger,
    log_state_transition,
    set_run_context,
)
from .tree_parser import parse_npm_ls_output

SUPPORTED_COMMANDS = ("install", "ci")


class PipelineState(Enum):
    INIT = "init"
    CONFIG_PREPARED = "config_prepared"
    EXTERNAL_INSTALL_RAN = "external_install_ran"
    TREE_PARSED = "tree_parsed"
    ENRICHED = "enriched"
    ASSEMBLED = "assembled"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True)
class CommandConfig:
    """Everything the command needs, fixed before the run starts."""

    command: str
    server: ServerDetails
    repo: str
    working_dir: Path
    npm_args: Tuple[str, ...] = ()
    threads: int = 3
    build: BuildConfiguration = field(default_factory=BuildConfiguration)
    builds_dir: Optional[Path] = None

    def __post_init__(self):
        if self.command not in SUPPORTED_COMMANDS:
            raise ValueError(f"command must be one of {SUPPORTED_COMMANDS}, got {self.command!r}")
        if not self.repo:
            raise ValueError("repo must be a non-empty string")
        object.__setattr__(self, "npm_args", tuple(self.npm_args))
        object.__setattr__(self, "working_dir", Path(self.working_dir))


@dataclass
class WorkingState:
    """Mutable state of one run."""

    state: PipelineState = PipelineState.INIT
    npm: Optional[NpmExecutable] = None
    npm_version: Optional[NpmVersion] = None
    json_output: bool = True
    registry: str = ""
    npm_auth: str = ""
    collect_build_info: bool = False
    package_info: Optional[PackageInfo] = None
    type_restriction: TypeRestriction = TypeRestriction.DEFAULT
    graph: DependencyGraph = field(default_factory=DependencyGraph)
    npmrc_backup: Optional[NpmrcBackup] = None
    stats: Optional[EnrichmentStats] = None
    manifest: Optional[ResolvedManifest] = None


def filter_flags(args: Sequence[str]) -> List[str]:
    """Drop arguments that start with '-'."""
    return [arg for arg in args if not arg.startswith("-")]


def parse_json_flag(value: str) -> bool:
    """
    Interpret 'npm config get json'.

    '--json=<not boolean>' makes npm treat json as true while echoing the
    raw value, so anything other than 'false' counts as true.
    """
    value = value.strip()
    if value not in ("true", "false"):
        get_command_logger().warning("json_flag_not_boolean", value=value)
    return value != "false"


def scopes_to_list(restriction: TypeRestriction) -> List[str]:
    """The 'npm ls' scopes to run for a type restriction."""
    scopes = []
    if restriction != TypeRestriction.PROD_ONLY:
        scopes.append(Scope.DEV.value)
    if restriction != TypeRestriction.DEV_ONLY:
        scopes.append(Scope.PROD.value)
    return scopes


class NpmInstallOrCiCommand:
    """
    Runs npm install/ci through Artifactory and collects build-info.

    State moves forward only: INIT, CONFIG_PREPARED, EXTERNAL_INSTALL_RAN,
    TREE_PARSED, ENRICHED, ASSEMBLED, DONE. Any failure once the .npmrc was
    touched restores it first and ends in FAILED.
    """

    def __init__(
        self,
        config: CommandConfig,
        npm: Optional[NpmExecutable] = None,
        client_factory: Optional[Callable[[ServerDetails], ArtifactoryClient]] = None,
        reporter: Optional[BuildInfoReporter] = None,
        store: Optional[BuildInfoStore] = None,
    ):
        self.config = config
        self.state = WorkingState(npm=npm)
        self.client_factory = client_factory or ArtifactoryClient
        self.reporter = reporter or BuildInfoReporter()
        self.store = store
        self.logger = get_command_logger()
        self.error_handler = get_error_handler()

    def _transition(self, new_state: PipelineState) -> None:
        log_state_transition(self.state.state.value, new_state.value)
        self.state.state = new_state

    async def run(self) -> WorkingState:
        """
        Execute the whole pipeline.

        Returns:
            WorkingState: Final state of the run

        Raises:
            NpmBuildInfoError: Or a subclass, for any failure
        """
        set_run_context(self.config.command, self.config.build.build_name, self.config.build.build_number)
        self.logger.info("command_started", command=self.config.command)
        try:
            async with self.client_factory(self.config.server) as client:
                await self._run(client)
        except BaseException as e:
            # Cancellation and Ctrl-C must restore the .npmrc too
            error = self._restore_and_error(e)
            self._transition(PipelineState.FAILED)
            if error is e:
                raise
            raise error from e
        finally:
            clear_run_context()

        self.logger.info("command_finished", command=self.config.command)
        return self.state

    async def _run(self, client: ArtifactoryClient) -> None:
        await self.prepare_prerequisites(client)

        await self.create_temp_npmrc()
        await self.run_install_or_ci()
        self.state.npmrc_backup.restore()

        if not self.state.collect_build_info:
            self._transition(PipelineState.DONE)
            self.reporter.print_summary(self.config.command)
            return

        await self.set_dependencies_list()
        await self.collect_dependencies_checksums(client)
        self.save_dependencies_data()
        self._transition(PipelineState.DONE)
        self.reporter.print_summary(self.config.command, self.state.manifest, self.state.stats)

    async def prepare_prerequisites(self, client: ArtifactoryClient) -> None:
        """Validate the environment and gather everything the .npmrc needs."""
        self.logger.debug("preparing_prerequisites")
        if self.config.server.uses_ssh_auth:
            log_credential_error(
                "SSH key authentication configured",
                "install_command",
                "prepare_prerequisites",
                credential_type="ssh key",
            )
            raise PrerequisiteError("SSH authentication is not supported in this command")

        if self.state.npm is None:
            self.state.npm = NpmExecutable.locate(self.config.working_dir)
        await self.validate_npm_version()
        self.state.json_output = parse_json_flag(
            await self.state.npm.config_get(self.config.npm_args, "json")
        )

        if not await client.repository_exists(self.config.repo):
            raise PrerequisiteError(f"Repository '{self.config.repo}' does not exist")
        self.state.registry = client.npm_registry_url(self.config.repo)
        self.state.npm_auth = await client.npm_auth_directive()

        if self.config.build.is_collecting:
            self.state.collect_build_info = True
            self.state.package_info = read_package_info(self.config.working_dir)

        self.state.npmrc_backup = NpmrcBackup(self.config.working_dir)
        self.state.npmrc_backup.acquire()

    async def validate_npm_version(self) -> None:
        npm_version = await self.state.npm.version()
        if not npm_version.at_least(MIN_SUPPORTED_NPM_VERSION):
            raise PrerequisiteError(
                f"npm {self.config.command} command requires npm client version "
                f"{MIN_SUPPORTED_NPM_VERSION} or higher, found {npm_version}"
            )
        self.state.npm_version = npm_version

    async def create_temp_npmrc(self) -> None:
        """Write the project .npmrc pointing npm at Artifactory."""
        self.logger.debug("creating_project_npmrc")
        config_list = await self.state.npm.config_list(self.config.npm_args)
        document = translate_npm_config(
            config_list, self.state.registry, self.state.npm_auth, self.state.json_output
        )
        self.state.type_restriction = document.type_restriction
        self.state.npmrc_backup.commit(document)
        self._transition(PipelineState.CONFIG_PREPARED)

    async def run_install_or_ci(self) -> None:
        filtered_args = filter_flags(self.config.npm_args)
        if self.state.collect_build_info and filtered_args:
            self.logger.warning(
                "build_info_skipped",
                reason="Build info dependencies collection with npm arguments is not supported",
            )
            self.reporter.console.print(
                "⚠️  Build info dependencies collection with npm arguments is not "
                "supported. Build info creation will be skipped.",
                style="yellow",
            )
            self.state.collect_build_info = False

        await self.state.npm.run_install_or_ci(self.config.command, filtered_args)
        self._transition(PipelineState.EXTERNAL_INSTALL_RAN)

    async def set_dependencies_list(self) -> None:
        """Run 'npm ls' per scope and merge the trees into one graph."""
        root_module_id = self.state.package_info.build_info_module_id()
        self.state.graph = DependencyGraph()
        for scope in scopes_to_list(self.state.type_restriction):
            try:
                stdout, stderr, code = await self.state.npm.list_dependencies(
                    self.config.npm_args, scope
                )
            except NpmBuildInfoError as e:
                log_tree_listing_warning(f"npm ls failed: {e}", scope, exception=e)
                continue
            if code != 0:
                log_tree_listing_warning(f"npm ls exited with code {code}", scope)
            if stderr.strip():
                log_tree_listing_warning(
                    "Some errors occurred while collecting dependencies info", scope, stderr=stderr
                )
            parse_npm_ls_output(stdout, scope, root_module_id, self.state.graph)
        self._transition(PipelineState.TREE_PARSED)

    async def collect_dependencies_checksums(self, client: ArtifactoryClient) -> None:
        self.reporter.console.print(
            "Collecting dependencies information... For the first run of the build, "
            "this may take a few minutes. Subsequent runs should be faster.",
            style="cyan",
        )
        previous_build = await client.get_latest_build_dependencies(
            self.config.build.build_name
        )
        enricher = ChecksumEnricher(client, threads=self.config.threads)
        self.state.stats = await enricher.enrich(self.state.graph, previous_build)
        self._transition(PipelineState.ENRICHED)

    def save_dependencies_data(self) -> None:
        build = self.config.build
        if not build.module:
            build = BuildConfiguration(
                build.build_name,
                build.build_number,
                self.state.package_info.build_info_module_id(),
            )
        store = self.store or BuildInfoStore(
            self.config.builds_dir or Path(get_config().install.builds_dir)
        )
        assembler = ManifestAssembler(store, self.reporter)
        self.state.manifest = assembler.assemble_and_save(self.state.graph, build)
        self._transition(PipelineState.ASSEMBLED)

    def _restore_and_error(self, error: BaseException) -> BaseException:
        """Restore the .npmrc after a failure; both errors survive a failed restore."""
        self.error_handler.error(
            ErrorCategory.INSTALL,
            f"npm {self.config.command} failed: {error}",
            "install_command",
            "run",
            exception=error,
            details={"state": self.state.state.value},
        )
        backup = self.state.npmrc_backup
        if backup is None or isinstance(error, NpmrcRestoreError):
            return error
        try:
            backup.restore()
        except NpmrcRestoreError as restore_error:
            return DoubleFailureError(restore_error, error)
        return error
