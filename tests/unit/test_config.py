"""Tests for process configuration."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from leasekeeper.config import Settings


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for var in ("POD_NAME", "POD_NAMESPACE", "LEASEKEEPER_IDENTITY", "LEASEKEEPER_NAMESPACE"):
        monkeypatch.delenv(var, raising=False)


def load(**values: object) -> Settings:
    return Settings(_env_file=None, **values)  # type: ignore[call-arg]


class TestIdentity:
    """Tests for candidate identity and namespace."""

    def test_missing_identity_is_rejected(self) -> None:
        """A process without identity cannot be configured."""
        with pytest.raises(ValidationError):
            load(namespace="default")

    def test_missing_namespace_is_rejected(self) -> None:
        """A process without namespace cannot be configured."""
        with pytest.raises(ValidationError):
            load(identity="pod-a")

    def test_downward_api_variables(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """POD_NAME and POD_NAMESPACE provide identity and namespace."""
        monkeypatch.setenv("POD_NAME", "dns-7f9c-abcde")
        monkeypatch.setenv("POD_NAMESPACE", "kube-system")

        settings = load()

        assert settings.identity == "dns-7f9c-abcde"
        assert settings.namespace == "kube-system"

    def test_prefixed_variables(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """LEASEKEEPER_IDENTITY works outside Kubernetes."""
        monkeypatch.setenv("LEASEKEEPER_IDENTITY", "host-1")
        monkeypatch.setenv("LEASEKEEPER_NAMESPACE", "edge")

        assert load().identity == "host-1"

    def test_blank_identity_is_rejected(self) -> None:
        """Whitespace is not an identity."""
        with pytest.raises(ValidationError):
            load(identity="   ", namespace="default")


class TestDefaults:
    """Tests for default values."""

    def test_defaults(self) -> None:
        """Election defaults follow the usual Kubernetes lease timings."""
        settings = load(identity="pod-a", namespace="default")

        assert settings.election_id == "leasekeeper-election"
        assert settings.lease_duration == 15.0
        assert settings.renew_deadline == 10.0
        assert settings.retry_period == 2.0
        assert settings.marker_key == "leasekeeper.io/leader"
        assert settings.marker_value == "true"
        assert settings.status_field == "leaderIdentity"
        assert settings.store_backend == "kubernetes"

    def test_env_overrides(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """LEASEKEEPER_ variables override defaults."""
        monkeypatch.setenv("LEASEKEEPER_ELECTION_ID", "dns-election")
        monkeypatch.setenv("LEASEKEEPER_LEASE_DURATION", "30")
        monkeypatch.setenv("LEASEKEEPER_STORE_BACKEND", "Redis")

        settings = load(identity="pod-a", namespace="default")

        assert settings.election_id == "dns-election"
        assert settings.lease_duration == 30.0
        assert settings.store_backend == "redis"


class TestValidation:
    """Tests for cross-field validation."""

    @pytest.mark.parametrize(
        "timings",
        [
            {"retry_period": 0},
            {"renew_deadline": 2.0, "retry_period": 2.0},
            {"lease_duration": 10.0, "renew_deadline": 10.0},
            {"reconcile_period": -1},
        ],
    )
    def test_inconsistent_timings(self, timings: dict[str, float]) -> None:
        """Timings must satisfy lease > deadline > retry > 0."""
        with pytest.raises(ValidationError):
            load(identity="pod-a", namespace="default", **timings)

    def test_unknown_backend(self) -> None:
        """Only known store backends are accepted."""
        with pytest.raises(ValidationError):
            load(identity="pod-a", namespace="default", store_backend="etcd")
