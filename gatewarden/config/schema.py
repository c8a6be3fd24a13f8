"""Configuration schema using Pydantic."""

from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class PathsConfig(BaseModel):
    """Where gatewarden keeps its shared files."""
    data_dir: str = "~/.gatewarden"
    schedules_file: str = "schedules.json"
    lock_file: str = "schedules.lock"  # Sibling marker, existence + mtime only
    deploy_state_file: str = "deploy-state.json"
    pid_file: str = "gateway.pid"  # Target of the hot-reload signal
    deploy_request_file: str = "deploy-request.json"  # Written by `deploy run`, consumed by the gateway

    def resolve(self, name: str) -> Path:
        """Resolve a configured file name against data_dir (absolute names win)."""
        p = Path(name).expanduser()
        if p.is_absolute():
            return p
        return Path(self.data_dir).expanduser() / p


class ScheduleConfig(BaseModel):
    """Schedule store configuration."""
    timezone: str = "Europe/Berlin"  # Zone for one-time "YYYY-MM-DD HH:MM" input
    lock_timeout_s: float = Field(default=5.0, gt=0)
    lock_stale_s: float = Field(default=30.0, gt=0)
    lock_retry_s: float = Field(default=0.025, gt=0)
    max_history: int = Field(default=50, ge=1)
    default_output: str = "telegram"
    reload_signal: str = "SIGUSR2"


class DeployConfig(BaseModel):
    """Self-deploy pipeline configuration. Command strings are run through the shell."""
    model_config = ConfigDict(extra="ignore")

    project_dir: str = "."
    status_command: str = "git status --porcelain"
    head_command: str = "git rev-parse HEAD"
    build_command: str = "npm run build"
    checkout_command: str = "git checkout {commit} -- ."
    restart_command: str = 'pm2 restart "{app}"'
    process_list_command: str = "pm2 jlist"
    app_name: str = "gateway"
    command_timeout_s: float = 300.0
    stale_lock_s: float = 300.0
    drain_poll_s: float = 0.5
    drain_timeout_s: float = 15.0
    rollback_restart_threshold: int = 3
    request_signal: str = "SIGUSR1"  # Tells the gateway a deploy request is waiting


class CircuitBreakerConfig(BaseModel):
    """Defaults for breakers guarding dependent services."""
    failure_threshold: int = Field(default=3, ge=1)
    recovery_timeout_ms: int = Field(default=30000, ge=0)
    success_threshold: int = Field(default=2, ge=1)


class Config(BaseSettings):
    """Root configuration for gatewarden."""
    model_config = SettingsConfigDict(
        env_prefix="GATEWARDEN_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    paths: PathsConfig = Field(default_factory=PathsConfig)
    schedule: ScheduleConfig = Field(default_factory=ScheduleConfig)
    deploy: DeployConfig = Field(default_factory=DeployConfig)
    circuit_breaker: CircuitBreakerConfig = Field(default_factory=CircuitBreakerConfig)

    @property
    def data_path(self) -> Path:
        """Get expanded data directory."""
        return Path(self.paths.data_dir).expanduser()

    @property
    def schedules_path(self) -> Path:
        return self.paths.resolve(self.paths.schedules_file)

    @property
    def lock_path(self) -> Path:
        return self.paths.resolve(self.paths.lock_file)

    @property
    def deploy_state_path(self) -> Path:
        return self.paths.resolve(self.paths.deploy_state_file)

    @property
    def pid_path(self) -> Path:
        return self.paths.resolve(self.paths.pid_file)

    @property
    def project_path(self) -> Path:
        """Get expanded project directory the deploy commands run in."""
        return Path(self.deploy.project_dir).expanduser()

    @property
    def deploy_request_path(self) -> Path:
        return self.paths.resolve(self.paths.deploy_request_file)
