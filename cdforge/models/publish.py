"""Image and chart publish matrix models."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict


class ImageSpec(BaseModel):
    """One entry of the image matrix, bound to a version tag."""

    model_config = ConfigDict(frozen=True)

    image_name: str
    tag: str

    @property
    def key(self) -> str:
        return self.image_name


class ChartSpec(BaseModel):
    """One entry of the chart matrix; versioned identically to the images."""

    model_config = ConfigDict(frozen=True)

    chart_name: str
    app_version: str
    chart_version: str

    @property
    def key(self) -> str:
        return self.chart_name


class EntryResult(BaseModel):
    """Outcome of publishing one matrix entry."""

    model_config = ConfigDict(frozen=True)

    key: str
    succeeded: bool
    detail: str = ""


class MatrixResult(BaseModel):
    """Aggregate of per-entry results, in matrix order."""

    model_config = ConfigDict(frozen=True)

    entries: list[EntryResult] = []

    @property
    def succeeded(self) -> bool:
        return bool(self.entries) and all(e.succeeded for e in self.entries)

    @property
    def failed_keys(self) -> list[str]:
        return [e.key for e in self.entries if not e.succeeded]

    @property
    def published_keys(self) -> list[str]:
        return [e.key for e in self.entries if e.succeeded]


# Fixed matrices from the CD workflow.
IMAGE_MATRIX: list[str] = [
    "bootstrap-tools",
    "fogingest",
    "fog-ledger",
    "fogreport",
    "fog-test-client",
    "fogview",
    "go-grpc-gateway",
    "node_hw",
    "mobilecoind",
    "watcher",
]

CHART_MATRIX: list[str] = [
    "consensus-node",
    "consensus-node-config",
    "fog-ingest",
    "fog-ingest-config",
    "fog-services",
    "fog-services-config",
    "fog-test-client",
    "mc-core-common-config",
    "mc-core-dev-env-setup",
    "mobilecoind",
    "watcher",
]
