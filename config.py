# config.py

import os
import logging
from typing import Dict, FrozenSet, Literal, Mapping, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from utils import is_safe_script_path

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "config.yaml"
DEFAULT_ALLOWED_BRANCHES = ("main", "master")
WILDCARD_REPO = "*"


class ConfigError(Exception):
    """Raised when the service configuration is unusable. Fatal at startup."""


class Settings(BaseModel):
    """Immutable runtime configuration, built once before the listener binds."""

    model_config = ConfigDict(frozen=True)

    webhook_secret: str = Field(min_length=1)
    allowed_branches: FrozenSet[str] = frozenset(DEFAULT_ALLOWED_BRANCHES)
    # Repository full name ("owner/name") or "*" -> absolute script path
    deploy_targets: Dict[str, str]
    host: str = "0.0.0.0"
    port: int = Field(default=9000, ge=1, le=65535)
    max_body_bytes: int = Field(default=1024 * 1024, gt=0)
    rate_limit_max: int = Field(default=10, gt=0)
    rate_limit_window: float = Field(default=15 * 60, gt=0)
    trust_forwarded_for: bool = False
    deploy_concurrency: Literal["parallel", "serialize", "replace"] = "parallel"
    deploy_timeout: Optional[float] = Field(default=None, gt=0)
    slack_webhook_url: Optional[str] = None
    debug: bool = False
    log_db_path: Optional[str] = None

    @field_validator("allowed_branches")
    @classmethod
    def _non_empty_branches(cls, value):
        if not value:
            raise ValueError("at least one allowed branch is required")
        return value

    @field_validator("deploy_targets")
    @classmethod
    def _check_targets(cls, value):
        if not value:
            raise ValueError("no deployment script configured")
        for repo, script in value.items():
            if repo != WILDCARD_REPO and not _is_repo_key(repo):
                raise ValueError(f"invalid repository key '{repo}', expected 'owner/name' or '*'")
            if not is_safe_script_path(script):
                raise ValueError(f"unsafe deployment script path for '{repo}': {script!r}")
            if not os.path.isfile(script):
                raise ValueError(f"deployment script for '{repo}' not found: {script}")
        return value

    def resolve_script(self, repo_full_name: str) -> Optional[str]:
        """Exact repository entry first, then the global wildcard script."""
        return self.deploy_targets.get(repo_full_name) or self.deploy_targets.get(WILDCARD_REPO)


def _is_repo_key(key: str) -> bool:
    owner, sep, name = key.partition("/")
    return bool(sep and owner and name and "/" not in name)


def _split_list(value: str):
    return [item.strip() for item in value.split(",") if item.strip()]


def as_bool(value) -> bool:
    return str(value).strip().lower() in ("1", "true", "yes", "on")


def parse_repo_scripts(value: str) -> Dict[str, str]:
    """
    Parse "owner/repo=/abs/path,owner/other=/abs/other" into a mapping.

    The repository key is taken verbatim, so owners and names containing
    underscores or dashes are kept intact.
    """
    mapping = {}
    for entry in _split_list(value):
        repo, sep, script = entry.partition("=")
        if not sep or not repo.strip() or not script.strip():
            raise ConfigError(f"Invalid REPO_SCRIPTS entry '{entry}', expected 'owner/repo=/path/to/script'")
        mapping[repo.strip()] = script.strip()
    return mapping


def read_config_file(config_path: Optional[str], required: bool) -> dict:
    """
    Load configuration from a YAML file.

    Returns:
        dict: Parsed configuration dictionary, empty when an optional file is absent.
    """
    if not config_path or not os.path.exists(config_path):
        if required:
            logger.error(f"Configuration file '{config_path}' not found.")
            raise ConfigError(f"Configuration file '{config_path}' not found.")
        logger.debug("No configuration file found, using environment only.")
        return {}

    try:
        with open(config_path, 'r') as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        logger.error(f"Error parsing YAML file '{config_path}': {e}")
        raise ConfigError(f"Invalid YAML in '{config_path}': {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"Configuration file '{config_path}' must contain a mapping.")
    logger.info(f"Configuration loaded successfully from '{config_path}'.")
    return data


def load_settings(config_path: Optional[str] = None, environ: Optional[Mapping[str, str]] = None) -> Settings:
    """
    Build the Settings from the YAML file and environment overrides.

    Environment variables win over the file. Any violation raises ConfigError.
    """
    if environ is None:
        load_dotenv()
        environ = os.environ

    if config_path is None:
        config_path = environ.get("CONFIG_PATH")
        required = config_path is not None
        config_path = config_path or DEFAULT_CONFIG_PATH
    else:
        required = True

    config = read_config_file(config_path, required)

    repo_scripts = config.get("repo_scripts") or {}
    if not isinstance(repo_scripts, dict):
        raise ConfigError("repo_scripts must be a mapping of 'owner/name' to script path.")
    targets = {str(repo): str(script) for repo, script in repo_scripts.items()}
    if config.get("deploy_script_path"):
        targets[WILDCARD_REPO] = config["deploy_script_path"]
    if environ.get("REPO_SCRIPTS"):
        targets.update(parse_repo_scripts(environ["REPO_SCRIPTS"]))
    if environ.get("DEPLOY_SCRIPT_PATH"):
        targets[WILDCARD_REPO] = environ["DEPLOY_SCRIPT_PATH"]

    branches = config.get("allowed_branches", list(DEFAULT_ALLOWED_BRANCHES))
    if isinstance(branches, str):
        branches = _split_list(branches)
    elif not isinstance(branches, (list, tuple)):
        raise ConfigError("allowed_branches must be a list or a comma-separated string.")
    if environ.get("ALLOWED_BRANCHES"):
        branches = _split_list(environ["ALLOWED_BRANCHES"])

    values = {
        "webhook_secret": environ.get("WEBHOOK_SECRET", config.get("github_webhook_secret", "")),
        "allowed_branches": frozenset(branches),
        "deploy_targets": targets,
    }

    # Plain settings: YAML key and matching upper-case environment variable
    for key in ("host", "port", "max_body_bytes", "rate_limit_max", "rate_limit_window",
                "deploy_concurrency", "deploy_timeout", "slack_webhook_url", "log_db_path"):
        value = environ.get(key.upper(), config.get(key))
        if value not in (None, ""):
            values[key] = value
    for key in ("debug", "trust_forwarded_for"):
        value = environ.get(key.upper(), config.get(key))
        if value is not None:
            values[key] = as_bool(value)

    if not values["webhook_secret"]:
        raise ConfigError("WEBHOOK_SECRET is required.")
    if not targets:
        raise ConfigError("Either DEPLOY_SCRIPT_PATH or per-repository scripts (REPO_SCRIPTS / repo_scripts) are required.")

    try:
        settings = Settings(**values)
    except ValidationError as e:
        problems = "; ".join(f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors())
        raise ConfigError(f"Invalid configuration: {problems}") from e

    # Log summary of key settings (without sensitive details)
    logger.info(f"Allowed branches: {', '.join(sorted(settings.allowed_branches))}")
    for repo, script in sorted(settings.deploy_targets.items()):
        logger.info(f"Deployment script for {repo}: {script}")
    logger.info(f"Deploy concurrency policy: {settings.deploy_concurrency}")
    return settings
