"""Launcher Core - game client update orchestration and binary domain patching.

This package keeps an installed game client up to date from full and
differential archives, and rewrites the auth domain embedded in the
client executable.

Key modules:
- core: Shared functionality (config, types, updater, patcher)
- formats: String encodings used inside the client binary
- commands: CLI command implementations
"""

__version__ = "0.1.0"

# Re-export commonly used types
from launcher_core.core.types import (
    Branch,
    DeploymentMode,
    PatchMode,
    VersionDetails,
)

__all__ = [
    "__version__",
    "Branch",
    "DeploymentMode",
    "PatchMode",
    "VersionDetails",
]
