"""Prometheus metrics for installation runs."""

from prometheus_client import Counter, Histogram

ARTIFACT_INSTALLS = Counter(
    "cpi_installer_artifacts_total",
    "Artifacts processed by the installer",
    ["kind", "outcome"],
)

INSTALL_DURATION = Histogram(
    "cpi_installer_install_duration_seconds",
    "Duration of a full installation run",
    ["outcome"],
)


def record_artifact(kind: str, outcome: str) -> None:
    """Count one package or job by outcome (installed, skipped, failed)."""
    ARTIFACT_INSTALLS.labels(kind=kind, outcome=outcome).inc()
