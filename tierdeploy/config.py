"""Centralized configuration for the tiered deployment orchestrator.

Uses pydantic-settings for environment variable loading and validation.
All settings can be overridden via environment variables with the
``TIERDEPLOY_`` prefix; stack files and CLI flags override them per run.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_TERMINAL_REASONS = (
    "CrashLoopBackOff,ImagePullBackOff,ErrImagePull,InvalidImageName,"
    "CreateContainerConfigError,ProgressDeadlineExceeded"
)


class OrchestratorSettings(BaseSettings):
    """Settings for orchestration runs.

    Environment variables:
        TIERDEPLOY_CLI_BINARY: kubectl/oc binary (auto-detected when unset)
        TIERDEPLOY_CONTEXT: kubeconfig context to use
        TIERDEPLOY_POLL_INTERVAL: Seconds between rollout status polls
        TIERDEPLOY_ROLLOUT_TIMEOUT: Per-unit readiness deadline in seconds
        TIERDEPLOY_PROBE_TIMEOUT: Per-check connectivity probe timeout
        TIERDEPLOY_LOG_TAIL_LINES: Log lines collected for failed workloads
        TIERDEPLOY_EVENT_LIMIT: Namespace events collected on failure
        TIERDEPLOY_PARALLEL_LAYERS: Deploy units of one layer concurrently
        TIERDEPLOY_CREATE_NAMESPACES: Apply a Namespace before each unit
        TIERDEPLOY_CLUSTER_DOMAIN: Cluster DNS domain for service addresses
        TIERDEPLOY_CHECK_ENDPOINTS: Run HTTP checks against external routes
        TIERDEPLOY_ENDPOINT_TIMEOUT: Timeout for external endpoint checks
        TIERDEPLOY_TERMINAL_REASONS: Comma-separated terminal condition reasons
        TIERDEPLOY_LOG_LEVEL: Logging level
        TIERDEPLOY_LOG_JSON: Enable JSON log format
    """

    model_config = SettingsConfigDict(
        env_prefix="TIERDEPLOY_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Cluster access
    cli_binary: str | None = Field(
        default=None,
        description="kubectl or oc binary; oc is preferred when both exist",
    )
    context: str | None = Field(
        default=None,
        description="kubeconfig context",
    )

    # Readiness
    poll_interval: float = Field(
        default=2.0,
        gt=0,
        description="Seconds between rollout status polls",
    )
    rollout_timeout: float = Field(
        default=300.0,
        gt=0,
        description="Per-unit readiness deadline in seconds",
    )
    terminal_reasons: str = Field(
        default=DEFAULT_TERMINAL_REASONS,
        description="Comma-separated condition reasons that fail a unit",
    )

    # Connectivity
    probe_timeout: float = Field(
        default=5.0,
        gt=0,
        description="Per-check probe timeout in seconds",
    )
    cluster_domain: str = Field(
        default="cluster.local",
        description="Cluster DNS domain",
    )
    check_endpoints: bool = Field(
        default=False,
        description="Run HTTP smoke checks against external routes",
    )
    endpoint_timeout: float = Field(
        default=10.0,
        gt=0,
        description="Timeout for external endpoint checks",
    )

    # Scheduling
    parallel_layers: bool = Field(
        default=False,
        description="Apply and wait on units of the same layer concurrently",
    )
    create_namespaces: bool = Field(
        default=True,
        description="Apply a Namespace resource before each unit",
    )

    # Diagnostics
    log_tail_lines: int = Field(
        default=50,
        ge=0,
        description="Log lines collected for failed workloads",
    )
    event_limit: int = Field(
        default=20,
        ge=0,
        description="Namespace events collected on failure",
    )

    # Observability
    log_level: str = Field(
        default="INFO",
        description="Logging level",
    )
    log_json: bool = Field(
        default=False,
        description="Enable JSON log format",
    )

    def get_terminal_reasons(self) -> frozenset[str]:
        """Get terminal condition reasons as a set.

        Returns:
            Set of reasons that move a unit to Failed.
        """
        return frozenset(
            r.strip() for r in self.terminal_reasons.split(",") if r.strip()
        )


# Global settings instance - import this directly
settings = OrchestratorSettings()
