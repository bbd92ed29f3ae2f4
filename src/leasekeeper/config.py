from __future__ import annotations

from pydantic import AliasChoices, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

STORE_BACKENDS = ("kubernetes", "redis", "memory")


class Settings(BaseSettings):
    """Process configuration.

    Identity and namespace have no default: a process that cannot tell who it
    is or where it runs must not take part in an election.
    """

    model_config = SettingsConfigDict(
        env_prefix="LEASEKEEPER_",
        env_file=".env",
        extra="ignore",
        populate_by_name=True,
    )

    # Candidate identity and scope (Downward API in Kubernetes)
    identity: str = Field(validation_alias=AliasChoices("POD_NAME", "LEASEKEEPER_IDENTITY"))
    namespace: str = Field(
        validation_alias=AliasChoices("POD_NAMESPACE", "LEASEKEEPER_NAMESPACE")
    )

    # Election
    election_id: str = "leasekeeper-election"
    lease_duration: float = 15.0
    renew_deadline: float = 10.0
    retry_period: float = 2.0

    # Leader marker
    marker_key: str = "leasekeeper.io/leader"
    marker_value: str = "true"
    reconcile_period: float = 5.0

    # Status record
    status_record: str = "leasekeeper-leader-info"
    status_field: str = "leaderIdentity"

    # Object store
    store_backend: str = "kubernetes"
    redis_url: str = Field(
        default="redis://localhost:6379/0",
        validation_alias="REDIS_URL",
    )
    redis_key_prefix: str = "leasekeeper:"
    kubeconfig: str | None = Field(
        default=None,
        validation_alias="KUBECONFIG",
    )

    # Observability
    log_level: str = "INFO"
    log_json: bool = True
    enable_metrics: bool = False
    metrics_port: int = 9090

    @field_validator("identity", "namespace")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
        return value

    @field_validator("store_backend")
    @classmethod
    def _known_backend(cls, value: str) -> str:
        value = value.lower()
        if value not in STORE_BACKENDS:
            raise ValueError(f"must be one of {', '.join(STORE_BACKENDS)}")
        return value

    @model_validator(mode="after")
    def _check_timings(self) -> "Settings":
        if self.retry_period <= 0:
            raise ValueError("retry_period must be positive")
        if self.renew_deadline <= self.retry_period:
            raise ValueError("renew_deadline must be greater than retry_period")
        if self.lease_duration <= self.renew_deadline:
            raise ValueError("lease_duration must be greater than renew_deadline")
        if self.reconcile_period <= 0:
            raise ValueError("reconcile_period must be positive")
        return self
