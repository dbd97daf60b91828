"""
Configuration management for npm-buildinfo.

Provides settings for the registry connection, the install/ci run, network
behavior and logging. Values are layered: defaults, then a project config
file, then environment variables, then command line flags.
"""

import json
import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from rich.console import Console

console = Console(stderr=True)

# Project config written by 'jfrog rt npmc'; also read when present
PROJECT_CONFIG_PATH = Path(".jfrog") / "projects" / "npm.yaml"


@dataclass
class ArtifactoryConfig:
    """Private registry connection settings."""

    url: str = ""
    repo: str = ""
    user: Optional[str] = None
    password: Optional[str] = None
    access_token: Optional[str] = None
    ssh_key_path: Optional[str] = None

    @property
    def base_url(self) -> str:
        """URL normalized with a single trailing slash."""
        return self.url.rstrip("/") + "/" if self.url else ""


@dataclass
class InstallConfig:
    """Settings for the install/ci run and build-info collection."""

    threads: int = 3
    builds_dir: str = str(Path.home() / ".npm-buildinfo" / "builds")


@dataclass
class NetworkConfig:
    """Network and registry client configuration."""

    user_agent: str = "npm-buildinfo/1.0.0"
    connect_timeout: float = 10.0
    read_timeout: float = 60.0
    retry_attempts: int = 3
    rate_limit: float = 20.0
    insecure_tls: bool = False


@dataclass
class LoggingConfig:
    """Logging configuration."""

    log_level: str = "WARNING"
    log_format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


@dataclass
class ComprehensiveConfig:
    """Main configuration containing all subsections."""

    artifactory: ArtifactoryConfig = field(default_factory=ArtifactoryConfig)
    install: InstallConfig = field(default_factory=InstallConfig)
    network: NetworkConfig = field(default_factory=NetworkConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    def to_dict(self, redact: bool = True) -> Dict[str, Any]:
        """Return the configuration as a dictionary, secrets masked by default."""
        data = asdict(self)
        if redact:
            for key in ("password", "access_token"):
                if data["artifactory"].get(key):
                    data["artifactory"][key] = "********"
        return data


_global_config: Optional[ComprehensiveConfig] = None


def validate_config_values(config: ComprehensiveConfig) -> List[str]:
    """
    Validate configuration values and return any errors.

    Args:
        config: Configuration to validate

    Returns:
        List[str]: List of validation errors (empty if valid)
    """
    errors = []

    if config.artifactory.url and not config.artifactory.url.startswith(
        ("http://", "https://")
    ):
        errors.append("artifactory.url must start with http:// or https://")
    if config.artifactory.password and not config.artifactory.user:
        errors.append("artifactory.user is required when a password is set")

    if config.network.connect_timeout <= 0:
        errors.append("network.connect_timeout must be positive")
    if config.network.read_timeout <= 0:
        errors.append("network.read_timeout must be positive")
    if config.network.retry_attempts < 0:
        errors.append("network.retry_attempts must be non-negative")
    if config.network.rate_limit <= 0:
        errors.append("network.rate_limit must be positive")

    if config.logging.log_level.upper() not in {
        "DEBUG",
        "INFO",
        "WARNING",
        "ERROR",
        "CRITICAL",
    }:
        errors.append(f"logging.log_level is not a valid level: {config.logging.log_level}")

    return errors


def load_config_file(config_path: Path) -> Optional[Dict[str, Any]]:
    """Load config from a YAML or JSON file."""
    if not config_path.exists():
        return None

    try:
        with open(config_path, encoding="utf-8") as f:
            if config_path.suffix.lower() in [".yaml", ".yml"]:
                data = yaml.safe_load(f)
            elif config_path.suffix.lower() == ".json":
                data = json.load(f)
            else:
                return None
    except (OSError, yaml.YAMLError, json.JSONDecodeError) as e:
        console.print(
            f"⚠️  Error loading config from {config_path}: {e}", style="yellow"
        )
        return None

    return data if isinstance(data, dict) else None


def find_config_file(working_dir: Optional[Path] = None) -> Optional[Path]:
    """Find config file in standard locations."""
    base = working_dir or Path.cwd()
    locations = [
        base / ".npm-buildinfo.yaml",
        base / ".npm-buildinfo.yml",
        base / ".npm-buildinfo.json",
        base / PROJECT_CONFIG_PATH,
        Path.home() / ".config" / "npm-buildinfo" / "config.yaml",
        Path.home() / ".config" / "npm-buildinfo" / "config.json",
    ]

    for location in locations:
        if location.exists():
            return location

    return None


def apply_config_section(
    config: Any, section_data: Dict[str, Any], section_name: str
) -> None:
    """Apply configuration from dictionary to config section."""
    for key, value in section_data.items():
        if hasattr(config, key):
            setattr(config, key, value)
        else:
            console.print(
                f"⚠️  Unknown config key in {section_name}: {key}", style="yellow"
            )


def apply_project_resolver(config: ComprehensiveConfig, data: Dict[str, Any]) -> None:
    """
    Apply the 'resolver' section of a project npm.yaml.

    The project file names the resolution repository and, optionally,
    inline server details.
    """
    resolver = data.get("resolver")
    if not isinstance(resolver, dict):
        return
    if resolver.get("repo"):
        config.artifactory.repo = str(resolver["repo"])
    if resolver.get("url"):
        config.artifactory.url = str(resolver["url"])


def load_environment_overrides(config: ComprehensiveConfig) -> None:
    """Load environment variable overrides."""

    def get_env_int(key: str) -> Optional[int]:
        try:
            return int(os.environ[key]) if key in os.environ else None
        except ValueError:
            console.print(f"⚠️  Invalid integer value for {key}, using default", style="yellow")
            return None

    def get_env_float(key: str) -> Optional[float]:
        try:
            return float(os.environ[key]) if key in os.environ else None
        except ValueError:
            console.print(f"⚠️  Invalid float value for {key}, using default", style="yellow")
            return None

    if url := os.environ.get("NPM_BUILDINFO_URL"):
        config.artifactory.url = url
    if repo := os.environ.get("NPM_BUILDINFO_REPO"):
        config.artifactory.repo = repo
    if user := os.environ.get("NPM_BUILDINFO_USER"):
        config.artifactory.user = user
    if password := os.environ.get("NPM_BUILDINFO_PASSWORD"):
        config.artifactory.password = password
    if token := os.environ.get("NPM_BUILDINFO_ACCESS_TOKEN"):
        config.artifactory.access_token = token
    if ssh_key := os.environ.get("NPM_BUILDINFO_SSH_KEY_PATH"):
        config.artifactory.ssh_key_path = ssh_key

    threads = get_env_int("NPM_BUILDINFO_THREADS")
    if threads is not None:
        config.install.threads = threads
    if builds_dir := os.environ.get("NPM_BUILDINFO_BUILDS_DIR"):
        config.install.builds_dir = builds_dir

    if connect_timeout := get_env_float("NPM_BUILDINFO_CONNECT_TIMEOUT"):
        config.network.connect_timeout = connect_timeout
    if read_timeout := get_env_float("NPM_BUILDINFO_READ_TIMEOUT"):
        config.network.read_timeout = read_timeout
    retries = get_env_int("NPM_BUILDINFO_RETRY_ATTEMPTS")
    if retries is not None:
        config.network.retry_attempts = retries

    if log_level := os.environ.get("NPM_BUILDINFO_LOG_LEVEL"):
        config.logging.log_level = log_level.upper()


def load_config(
    config_path: Optional[Path] = None, working_dir: Optional[Path] = None
) -> ComprehensiveConfig:
    """Load configuration from file and environment."""
    global _global_config

    if _global_config is not None and config_path is None:
        return _global_config

    config = ComprehensiveConfig()

    config_file = config_path or find_config_file(working_dir)
    if config_file:
        file_config = load_config_file(config_file)
        if file_config:
            for section in ("artifactory", "install", "network", "logging"):
                if isinstance(file_config.get(section), dict):
                    apply_config_section(
                        getattr(config, section), file_config[section], section
                    )
            apply_project_resolver(config, file_config)

    load_environment_overrides(config)

    validation_errors = validate_config_values(config)
    if validation_errors:
        console.print("⚠️  Configuration validation errors:", style="red")
        for error in validation_errors:
            console.print(f"  • {error}", style="red")

    _global_config = config
    return config


def get_config() -> ComprehensiveConfig:
    """Get the global configuration instance."""
    global _global_config
    if _global_config is None:
        _global_config = load_config()
    return _global_config


def reset_config() -> None:
    """Reset the global configuration (useful for testing)."""
    global _global_config
    _global_config = None


def create_sample_config() -> str:
    """Generate a sample YAML configuration."""
    sample_config = {
        "artifactory": {
            "url": "https://acme.jfrog.io/artifactory/",
            "repo": "npm-virtual",
            "user": "ci-user",
            "access_token": None,
        },
        "install": {"threads": 3},
        "network": {
            "connect_timeout": 10.0,
            "read_timeout": 60.0,
            "retry_attempts": 3,
            "rate_limit": 20.0,
        },
        "logging": {"log_level": "WARNING"},
    }

    return yaml.safe_dump(sample_config, sort_keys=False)
