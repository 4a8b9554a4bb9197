"""Update planning across a chain of builds.

Release installs advance one build at a time so that each step can
use a small differential archive. A differential is only usable when
it was built against exactly the build installed immediately before
the step runs, which the orchestrator re-checks as the chain advances.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from launcher_core.core.types import Branch, VersionDetails


@dataclass(frozen=True)
class PlanStep:
    """One build to install.

    Attributes:
        version: Target build of this step
        force_full: Always deploy a full archive (no differential chaining)
    """

    version: int
    force_full: bool = False


@dataclass
class UpdatePlan:
    """Ordered builds taking an installation from ``current`` to ``target``."""

    current: int | None
    target: int
    branch: Branch
    steps: list[PlanStep] = field(default_factory=lambda: list[PlanStep]())

    @property
    def versions(self) -> list[int]:
        return [step.version for step in self.steps]

    @property
    def is_empty(self) -> bool:
        return not self.steps

    @property
    def is_clean_install(self) -> bool:
        return len(self.steps) == 1 and self.steps[0].force_full


def needs_intermediate_patches(current: int | None, target: int) -> list[int]:
    """List every build after ``current`` up to and including ``target``.

    Returns an empty list when there is no current build or it is
    already at or past the target.
    """
    if current is None:
        return []
    return list(range(current + 1, target + 1))


def plan_update(current: int | None, target: int, branch: Branch | str = Branch.RELEASE) -> UpdatePlan:
    """Compute the update plan.

    Args:
        current: Installed build, None for a clean install
        target: Desired build
        branch: Release channel

    Returns:
        A single forced-full step for clean installs and non-release
        branches, otherwise one step per intermediate build
    """
    branch = Branch(branch)

    if current is None or branch is not Branch.RELEASE:
        return UpdatePlan(current=current, target=target, branch=branch, steps=[PlanStep(target, force_full=True)])

    steps = [PlanStep(version) for version in needs_intermediate_patches(current, target)]
    return UpdatePlan(current=current, target=target, branch=branch, steps=steps)


def can_use_differential_update(installed: int | None, details: VersionDetails | None) -> bool:
    """Check whether a step may be deployed from its differential archive.

    Args:
        installed: Build installed right now
        details: Download metadata of the step's build

    Returns:
        True if a true differential exists and was built against ``installed``
    """
    if details is None or not details.differential_url or not details.is_differential:
        return False
    if installed is None or details.source_version is None:
        return False
    return installed == details.source_version
