"""Configuration loading and validation."""

import logging
import os
from pathlib import Path
from string import Formatter
from typing import Any, Dict, List, Literal, Optional

import yaml
from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

DEFAULT_WORKER_COUNT = 2
WARM_MODES = ("single", "branch", "issue")

DEFAULT_TASK_COMMANDS = [
    "node scripts/plan.js {issue_key}",
    "node scripts/plan.js load {issue_key}",
    "node scripts/plan-generate.js {issue_key} --unattended",
]


class OrchestratorConfig(BaseSettings):
    """Sandbox pool configuration.

    The DOCKER_* variables keep the names used by the shell tooling that
    drives the pool; everything else can be set with a PLAN_ prefix or from
    config/orchestrator.yaml.
    """
    model_config = SettingsConfigDict(
        env_prefix="PLAN_",
        env_file=".env",
        extra="ignore",
        populate_by_name=True,
    )

    project_root: Path = Field(default_factory=Path.cwd)

    # Pool
    worker_count: int = Field(
        default=DEFAULT_WORKER_COUNT,
        validation_alias=AliasChoices(
            "DOCKER_WORKER_COUNT", "DOCKER_PARALLEL_LIMIT"
        ),
    )
    reuse_sandboxes: bool = Field(
        default=True,
        validation_alias=AliasChoices("DOCKER_REUSE_ARCADIA"),
    )
    worker_prefix: str = "devduck-worker"

    # Warm containers
    warm_mode: Literal["single", "branch", "issue"] = Field(
        default="branch",
        validation_alias=AliasChoices("DOCKER_WARM_MODE"),
    )
    warm_container_name: str = Field(
        default="devduck-arcadia-warm",
        validation_alias=AliasChoices("DOCKER_WARM_CONTAINER_NAME"),
    )
    object_store_volume: str = Field(
        default="devduck-arc-object-store",
        validation_alias=AliasChoices("DOCKER_ARC_OBJECT_STORE_VOLUME"),
    )
    service_container_name: str = "devduck-service"
    mount_timeout_seconds: float = 30.0
    mount_poll_interval_seconds: float = 0.5

    # Image and runtime
    image: str = "devduck-plan:latest"
    dockerfile: str = "Dockerfile.plan"
    network: str = "plan-network"
    platform: str = Field(
        default="linux/amd64",
        validation_alias=AliasChoices("DOCKER_PLATFORM"),
    )
    base_image: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("DOCKER_BASE_IMAGE"),
    )

    # Version control workspace
    vcs_binary: str = "arc"
    host_repo_path: Optional[Path] = Field(
        default=None,
        validation_alias=AliasChoices("ARCADIA"),
    )
    default_project_path: str = "junk/devduck"
    max_diff_lines: int = 10000

    # Commands run inside the sandbox; {issue_key} is substituted (shell-quoted)
    task_commands: List[str] = Field(default_factory=lambda: list(DEFAULT_TASK_COMMANDS))
    install_command: str = "node scripts/install.js --yes"
    service_command: str = "node scripts/task-queue.js"

    @field_validator("worker_count", mode="before")
    @classmethod
    def coerce_worker_count(cls, v: Any) -> int:
        """Invalid or non-positive values fall back to the default pool size."""
        try:
            count = int(str(v).strip())
        except (TypeError, ValueError):
            logger.warning(f"Invalid worker count {v!r}, using {DEFAULT_WORKER_COUNT}")
            return DEFAULT_WORKER_COUNT
        if count <= 0:
            logger.warning(f"Non-positive worker count {count}, using {DEFAULT_WORKER_COUNT}")
            return DEFAULT_WORKER_COUNT
        return count

    @field_validator("reuse_sandboxes", mode="before")
    @classmethod
    def parse_reuse_flag(cls, v: Any) -> bool:
        # Only an explicit "0" disables reuse
        if isinstance(v, bool):
            return v
        return str(v).strip() != "0"

    @field_validator("warm_mode", mode="before")
    @classmethod
    def normalize_warm_mode(cls, v: Any) -> str:
        mode = str(v or "branch").strip().lower()
        return mode if mode in WARM_MODES else "branch"

    @field_validator("mount_timeout_seconds", "mount_poll_interval_seconds")
    @classmethod
    def validate_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError(f"must be positive, got {v}")
        return v

    @field_validator("task_commands")
    @classmethod
    def validate_task_commands(cls, v: List[str]) -> List[str]:
        """Templates may only reference ``{issue_key}``; use ``{{``/``}}`` for literal braces."""
        for template in v:
            try:
                fields = {name for _, name, _, _ in Formatter().parse(template) if name is not None}
            except ValueError as e:
                raise ValueError(f"malformed task command {template!r}: {e}") from e
            unknown = fields - {"issue_key"}
            if unknown:
                raise ValueError(
                    f"task command {template!r} references unknown placeholder(s): "
                    f"{', '.join(sorted(repr(f) for f in unknown))}"
                )
        return v

    @property
    def cache_dir(self) -> Path:
        return self.project_root / ".cache"

    @property
    def tasks_dir(self) -> Path:
        return self.cache_dir / "tasks"

    @property
    def worker_state_path(self) -> Path:
        return self.tasks_dir / ".queue" / "workers.json"

    @property
    def log_file(self) -> Path:
        return self.cache_dir / "docker.log"

    @property
    def tmp_dir(self) -> Path:
        return self.cache_dir / "tmp"

    @property
    def dotenv_path(self) -> Path:
        return self.project_root / ".env"

    def resolved_host_repo_path(self) -> Path:
        """Host checkout of the repository, with ~ expanded."""
        if self.host_repo_path is not None:
            return Path(os.path.expanduser(str(self.host_repo_path)))
        return Path.home() / "arcadia"

    def host_token_path(self) -> Optional[Path]:
        """The host VCS auth token, if one exists."""
        token = Path.home() / f".{self.vcs_binary}" / "token"
        return token if token.is_file() else None


def _expand_env_vars(data: Any, _path: str = "") -> Any:
    """Recursively expand ${VAR} references in config data."""
    if isinstance(data, dict):
        return {k: _expand_env_vars(v, f"{_path}.{k}" if _path else k) for k, v in data.items()}
    elif isinstance(data, list):
        return [_expand_env_vars(item, f"{_path}[{i}]") for i, item in enumerate(data)]
    elif isinstance(data, str) and data.startswith("${") and data.endswith("}"):
        env_var = data[2:-1]
        value = os.environ.get(env_var)
        if value is None:
            logger.warning(
                f"Environment variable '{env_var}' not set (referenced at config path: {_path or 'root'}). "
                f"The literal string '{data}' will be used."
            )
            return data
        return value
    return data


def load_config(
    config_path: Optional[Path] = None,
    **overrides: Any,
) -> OrchestratorConfig:
    """Load orchestrator configuration.

    Environment variables and .env always apply. When the YAML file exists its
    values are passed as init arguments, so they win over the environment;
    explicit ``overrides`` win over both.
    """
    data: Dict[str, Any] = {}
    if config_path is not None:
        if config_path.exists():
            with open(config_path) as f:
                data = yaml.safe_load(f) or {}
            data = _expand_env_vars(data)
        else:
            logger.debug(f"Config file not found: {config_path}, using environment only")
    data.update({k: v for k, v in overrides.items() if v is not None})
    return OrchestratorConfig(**data)
