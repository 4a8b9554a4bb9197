"""Core functionality for launcher_core.

This module provides shared functionality used across the entire package:
- Configuration management
- Type definitions
- Update orchestration (resolve, acquire, deploy)
- Client binary patching
"""

from launcher_core.core.types import (
    Branch,
    BranchInfo,
    DeploymentMode,
    PatchMode,
    VersionDetails,
)
from launcher_core.core.utils import (
    extract_version_number,
    format_size,
    platform_key,
)

__all__ = [
    # Types
    "Branch",
    "BranchInfo",
    "DeploymentMode",
    "PatchMode",
    "VersionDetails",
    # Utils
    "extract_version_number",
    "format_size",
    "platform_key",
]
