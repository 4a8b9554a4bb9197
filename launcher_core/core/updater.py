"""Update orchestration: plan, acquire and deploy builds in sequence.

Steps run strictly one after another because each step's result (the
newly installed build) decides whether the next step may use its
differential archive. The installed build is persisted right after
each successful deployment and never before, so an interrupted run
resumes from the last applied build on the next invocation.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

import structlog

from launcher_core.core.acquire import ArchiveAcquirer
from launcher_core.core.config import AppConfig
from launcher_core.core.deploy import ArchiveDeployer
from launcher_core.core.paths import find_client_path
from launcher_core.core.resolver import UpdatePlan, can_use_differential_update, plan_update
from launcher_core.core.state import VersionStore
from launcher_core.core.types import Branch, DeploymentMode, ProgressCallback, VersionDetails
from launcher_core.core.version_info import VersionInfoClient

logger = structlog.get_logger()


@dataclass
class StepResult:
    """Outcome of one applied plan step."""

    version: int
    mode: DeploymentMode
    fell_back_to_full: bool = False


@dataclass
class UpdateReport:
    """What an update run did."""

    previous: int | None
    target: int
    branch: Branch
    steps: list[StepResult] = field(default_factory=lambda: list[StepResult]())
    skipped: bool = False

    @property
    def installed(self) -> int | None:
        return self.steps[-1].version if self.steps else self.previous


def _prefixed(progress: ProgressCallback | None, prefix: str) -> ProgressCallback | None:
    if progress is None:
        return None

    def forward(message: str, percent: float | None = None, *extra: object) -> None:
        progress(f"{prefix}{message}", percent, *extra)

    return forward


class UpdateOrchestrator:
    """Drives version resolution, archive acquisition and deployment."""

    def __init__(
        self,
        config: AppConfig,
        store: VersionStore,
        version_client: VersionInfoClient | None = None,
        acquirer: ArchiveAcquirer | None = None,
        deployer: ArchiveDeployer | None = None,
    ):
        self.config = config
        self.store = store
        self.version_client = version_client or VersionInfoClient(config)
        self.acquirer = acquirer or ArchiveAcquirer(
            self.version_client.downloader,
            min_cached_size=config.min_cached_archive_size,
        )
        self.deployer = deployer or ArchiveDeployer(
            timeout=config.deploy_timeout,
            max_output=config.deploy_max_output,
        )

    @property
    def game_dir(self) -> Path:
        return self.config.game_dir

    def _archive_path(self, branch: Branch, url: str, differential: bool) -> Path:
        name = url.rstrip("/").rsplit("/", 1)[-1]
        prefix = f"{branch.value}_patch_" if differential else f"{branch.value}_"
        return self.config.cache_dir / f"{prefix}{name}"

    def _deploy_full(self, details: VersionDetails, progress: ProgressCallback | None) -> None:
        archive = self._archive_path(details.branch, details.full_url, differential=False)
        self.acquirer.acquire(details.full_url, archive, details.full_checksum, progress)
        self.deployer.deploy(archive, self.game_dir, self.config.tools_dir, progress, is_differential=False)

    def _deploy_differential(self, details: VersionDetails, progress: ProgressCallback | None) -> None:
        assert details.differential_url is not None
        archive = self._archive_path(details.branch, details.differential_url, differential=True)
        self.acquirer.acquire(details.differential_url, archive, details.checksum, progress)
        self.deployer.deploy(archive, self.game_dir, self.config.tools_dir, progress, is_differential=True)

        # Differential archives are single-use.
        try:
            archive.unlink(missing_ok=True)
            logger.debug("patch_file_removed", path=str(archive))
        except OSError as e:
            logger.warning("patch_file_cleanup_failed", path=str(archive), error=str(e))

    def _run_step(
        self,
        plan: UpdatePlan,
        index: int,
        progress: ProgressCallback | None,
    ) -> StepResult:
        step = plan.steps[index]
        label = f"[{index + 1}/{len(plan.steps)}] "
        details = self.version_client.get_version_details(step.version, plan.branch)

        if step.force_full:
            if progress:
                progress(f"Downloading full game archive (v{step.version})...", 0)
            self._deploy_full(details, _prefixed(progress, label))
            return StepResult(step.version, DeploymentMode.FULL)

        installed = self.store.load_installed_version()
        if can_use_differential_update(installed, details):
            logger.info(
                "differential_step",
                source=details.source_version,
                target=step.version,
            )
            if progress:
                progress(f"Applying patch {index + 1}/{len(plan.steps)}: v{step.version}...", 0)
            self._deploy_differential(details, _prefixed(progress, label))
            return StepResult(step.version, DeploymentMode.DIFFERENTIAL)

        logger.warning(
            "differential_unavailable_full_fallback",
            version=step.version,
            installed=installed,
            differential_source=details.source_version,
            differential_url=details.differential_url,
        )
        if progress:
            progress(f"Downloading full archive for v{step.version} ({index + 1}/{len(plan.steps)})...", 0)
        self._deploy_full(details, _prefixed(progress, label))
        return StepResult(step.version, DeploymentMode.FULL, fell_back_to_full=True)

    def perform_intelligent_update(
        self,
        target: int,
        branch: Branch | str = Branch.RELEASE,
        progress: ProgressCallback | None = None,
    ) -> UpdateReport:
        """Bring the installation to ``target``.

        Any acquisition or deployment failure aborts the remaining plan;
        steps already applied stay persisted.

        Args:
            target: Desired build
            branch: Release channel
            progress: Optional progress callback

        Returns:
            Report of the applied steps

        Raises:
            NetworkError, IntegrityError, DeploymentError, ConfigPersistenceError
        """
        branch = Branch(branch)
        current = self.store.load_installed_version()
        logger.info(
            "update_start",
            current=current,
            target=target,
            branch=branch.value,
        )

        plan = plan_update(current, target, branch)
        report = UpdateReport(previous=current, target=target, branch=branch)

        if plan.is_empty:
            logger.info("update_not_needed", current=current, target=target)
            return report

        logger.info("update_plan", versions=plan.versions, clean_install=plan.is_clean_install)

        for index, step in enumerate(plan.steps):
            result = self._run_step(plan, index, progress)
            self.store.save_installed_version(step.version)
            report.steps.append(result)
            logger.info(
                "update_step_applied",
                version=step.version,
                mode=result.mode.value,
                step=index + 1,
                total=len(plan.steps),
            )

        logger.info("update_complete", version=target, branch=branch.value)
        if progress:
            progress(f"Version {target} installed", 100)
        return report

    def ensure_game_installed(
        self,
        target: int,
        branch: Branch | str = Branch.RELEASE,
        progress: ProgressCallback | None = None,
    ) -> UpdateReport:
        """Update only if the client is missing or not at ``target``."""
        branch = Branch(branch)
        if find_client_path(self.game_dir) is not None:
            current = self.store.load_installed_version()
            if current == target:
                logger.info("game_already_installed", version=target)
                return UpdateReport(previous=current, target=target, branch=branch, skipped=True)

        return self.perform_intelligent_update(target, branch, progress)
