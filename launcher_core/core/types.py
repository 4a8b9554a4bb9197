"""Core type definitions for launcher_core."""

from collections.abc import Callable
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field

# Invoked as (message, percent | None, *extra); downloads append (downloaded, total).
ProgressCallback = Callable[..., None]


class Branch(StrEnum):
    """Release channels."""
    RELEASE = "release"
    PRE_RELEASE = "pre-release"


class DeploymentMode(StrEnum):
    """How a single update step is deployed."""
    FULL = "full"
    DIFFERENTIAL = "differential"


class PatchMode(StrEnum):
    """Domain patching modes."""
    DIRECT = "direct"
    SPLIT = "split"


class BranchInfo(BaseModel):
    """Per-branch entry of the version-info endpoint."""
    newest: int = Field(..., description="Newest build ordinal")
    build_version: str | None = Field(None, alias="buildVersion", description="Build version string")

    model_config = ConfigDict(extra="allow", populate_by_name=True)


class VersionDetails(BaseModel):
    """Everything needed to acquire one build."""
    version: int = Field(..., description="Build ordinal")
    branch: Branch = Field(default=Branch.RELEASE, description="Release channel")
    full_url: str = Field(..., description="Full archive URL")
    full_checksum: str | None = Field(None, description="SHA-256 of the full archive")
    differential_url: str | None = Field(None, description="Differential archive URL")
    source_version: int | None = Field(None, description="Build the differential applies to")
    checksum: str | None = Field(None, description="SHA-256 of the differential archive")
    is_differential: bool = Field(default=False, description="Differential archive is a true patch")

    @property
    def build_name(self) -> str:
        return f"HYTALE-Build-{self.version}"
