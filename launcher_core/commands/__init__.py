"""CLI command implementations for launcher_core.

- update: Check, plan and install game builds
- patch: Patch, inspect and restore the client binary
"""

from launcher_core.commands.patch import patch_group
from launcher_core.commands.update import update_group

__all__ = ["patch_group", "update_group"]
