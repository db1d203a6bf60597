"""
Deployment sequencer.

Runs a deployment as a fixed sequence of phases:

    backup -> extract -> install -> verify -> start -> cleanup

Extraction failures abort before the hosting directory is touched. Install
and verification failures restore the backup. A standalone server that fails
to start leaves the files deployed and is reported as a warning.
"""

import logging
import shutil
from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import List, Optional, Dict, Any

from webdeploy.archive import extract_archive, directory_size_mb, check_size_budget
from webdeploy.backup import BackupManager, clear_directory, copy_tree_contents
from webdeploy.exceptions import (
    ArchiveNotFoundError,
    DeploymentError,
    LaunchError,
    VerificationError,
)
from webdeploy.launcher import (
    LaunchResult,
    is_process_alive,
    read_pid,
    start_application,
    terminate_process_group,
    write_start_script,
)
from webdeploy.permissions import apply_permissions
from webdeploy.profiles import DeploymentProfile, STATIC, get_profile
from webdeploy.settings import Settings, get_settings
from webdeploy.state.deployment_state import (
    DeploymentPhase,
    DeploymentStateManager,
    create_deployment_id,
)
from webdeploy.state.rollback_manager import RollbackManager
from webdeploy.utils.decorators import log_execution_time

logger = logging.getLogger(__name__)

QUICK_PROFILE = "quick"


@dataclass
class VerificationReport:
    """Result of checking a hosting directory against a profile."""
    profile: str
    found: List[str] = field(default_factory=list)
    missing_required: List[str] = field(default_factory=list)
    missing_optional: List[str] = field(default_factory=list)
    size_mb: int = 0

    @property
    def ok(self) -> bool:
        return not self.missing_required


@dataclass
class DeploymentResult:
    """Summary of a deployment run, successful or not."""
    deployment_id: str
    profile: str
    success: bool = False
    rolled_back: bool = False
    backup_created: bool = False
    size_mb: int = 0
    warnings: List[str] = field(default_factory=list)
    verification: Optional[VerificationReport] = None
    launch: Optional[LaunchResult] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class Deployer:
    """Deploys a build archive into the hosting directory."""

    def __init__(self, settings: Optional[Settings] = None,
                 state_manager: Optional[DeploymentStateManager] = None,
                 backup_manager: Optional[BackupManager] = None):
        self.settings = settings or get_settings()
        self.state_manager = state_manager or DeploymentStateManager(self.settings.state_path)
        self.backup_manager = backup_manager or BackupManager(
            self.settings.deploy_path, self.settings.backup_path
        )
        self.rollback_manager = RollbackManager(
            self.backup_manager, self.state_manager, self.settings.pid_file
        )

    def _require_archive(self) -> Path:
        archive = self.settings.archive_path
        if not archive.is_file():
            raise ArchiveNotFoundError(
                f"Deployment archive not found in {self.settings.base_dir}: "
                f"upload {self.settings.archive_name} first"
            )
        return archive

    @log_execution_time
    def deploy(self, profile_name: Optional[str] = None, start: bool = True) -> DeploymentResult:
        """Run the full deployment sequence.

        Args:
            profile_name: 'auto', 'static' or 'standalone'; defaults to settings
            start: Start the server when the profile supports it

        Returns:
            DeploymentResult of a successful deployment

        Raises:
            ArchiveNotFoundError: If the archive is missing (nothing is changed)
            DeploymentError: If a phase fails; result is attached to the error
        """
        profile_name = profile_name or self.settings.deployment_profile
        archive = self._require_archive()

        result = DeploymentResult(
            deployment_id=create_deployment_id(profile_name),
            profile=profile_name,
        )
        state = self.state_manager
        state.start_deployment(result.deployment_id, profile_name)
        logger.info(f"🎬 Deploying {self.settings.app_name} from {archive.name}")

        # Backup
        state.start_phase(DeploymentPhase.BACKUP)
        previous_pid = read_pid(self.settings.deploy_path / self.settings.pid_file)
        try:
            self.backup_manager.remove_old_backup()
            result.backup_created = self.backup_manager.create_backup()
        except OSError as e:
            result.error = f"Backup failed: {e}"
            state.fail_phase(DeploymentPhase.BACKUP, result.error)
            raise DeploymentError(result.error, result) from e
        state.complete_phase(DeploymentPhase.BACKUP, {"backup_created": result.backup_created})

        # Extract
        state.start_phase(DeploymentPhase.EXTRACT)
        try:
            profile = self._prepare(archive, profile_name, result)
        except DeploymentError as e:
            result.error = str(e)
            state.fail_phase(DeploymentPhase.EXTRACT, result.error)
            self._remove_temp_dir()
            e.result = result
            raise
        result.profile = profile.name
        state.set_profile(profile.name)
        state.complete_phase(DeploymentPhase.EXTRACT, {"size_mb": result.size_mb})

        # Install and verify, rolling back on failure
        phase = DeploymentPhase.INSTALL
        try:
            state.start_phase(phase)
            self._install(profile)
            state.complete_phase(phase)

            phase = DeploymentPhase.VERIFY
            state.start_phase(phase)
            report = self.verify(profile)
            result.verification = report
            for name in report.missing_optional:
                result.warnings.append(f"{profile.labels.get(name, name)} missing ({name})")
            if not report.ok:
                raise VerificationError(
                    f"Required file(s) missing after deploy: {', '.join(report.missing_required)}"
                )
            state.complete_phase(phase, {"size_mb": report.size_mb})
        except (DeploymentError, OSError) as e:
            result.error = str(e)
            state.fail_phase(phase, result.error)
            logger.error("❌ Deployment failed!")
            result.rolled_back = self.rollback()
            self.cleanup_temp()
            raise DeploymentError(result.error, result) from e

        # Start
        if profile.can_start and start:
            state.start_phase(DeploymentPhase.START)
            self._stop_previous(previous_pid)
            try:
                result.launch = start_application(self.settings.deploy_path, self.settings)
            except LaunchError as e:
                result.launch = LaunchResult(
                    pid=None,
                    running=False,
                    log_file=str(self.settings.deploy_path / self.settings.app_log_file),
                    error=str(e),
                )
            if not result.launch.success:
                result.warnings.append(
                    f"Deployment completed but application failed to start: {result.launch.error}"
                )
            state.complete_phase(DeploymentPhase.START, result.launch.to_dict())
        else:
            reason = "disabled" if profile.can_start else f"{profile.name} profile has no server"
            state.skip_phase(DeploymentPhase.START, reason)

        # Cleanup
        state.start_phase(DeploymentPhase.CLEANUP)
        removed = self.cleanup_temp()
        state.complete_phase(DeploymentPhase.CLEANUP, {"removed": removed})

        result.size_mb = directory_size_mb(self.settings.deploy_path)
        result.success = True
        state.complete_deployment()
        return result

    def _prepare(self, archive: Path, profile_name: str, result: DeploymentResult) -> DeploymentProfile:
        """Extract the archive into the temp dir and resolve the profile."""
        temp = self.settings.temp_path
        if temp.exists():
            shutil.rmtree(temp)

        extract_archive(archive, temp)

        result.size_mb = directory_size_mb(temp)
        logger.info(f"Deployment size: {result.size_mb}MB")
        warning = check_size_budget(result.size_mb, self.settings.max_size_mb)
        if warning:
            logger.warning(f"⚠️ {warning}")
            result.warnings.append(warning)

        return get_profile(profile_name, temp)

    def _install(self, profile: DeploymentProfile) -> None:
        """Replace the hosting directory contents with the extracted tree."""
        deploy = self.settings.deploy_path
        logger.info(f"🔄 Deploying {profile.name} files to {deploy}")

        if deploy.is_dir():
            clear_directory(deploy)
        else:
            deploy.mkdir(parents=True)

        copy_tree_contents(self.settings.temp_path, deploy)

        if profile.writes_launcher:
            write_start_script(deploy, self.settings)

        apply_permissions(deploy, profile)

    def _stop_previous(self, pid: Optional[int]) -> None:
        """Stop the server started by the previous deployment, if still alive."""
        if pid is not None and is_process_alive(pid):
            logger.info(f"Stopping previous application (PID {pid})")
            terminate_process_group(pid)

    def verify(self, profile: Optional[DeploymentProfile] = None) -> VerificationReport:
        """Check the hosting directory for the profile's marker files."""
        deploy = self.settings.deploy_path
        if profile is None:
            profile = get_profile(self.settings.deployment_profile, deploy)

        report = VerificationReport(profile=profile.name)
        for name in profile.required_files:
            if (deploy / name).is_file():
                report.found.append(name)
            else:
                report.missing_required.append(name)
        for name in profile.optional_files:
            if (deploy / name).is_file():
                report.found.append(name)
            else:
                report.missing_optional.append(name)

        report.size_mb = directory_size_mb(deploy)

        for name in report.found:
            logger.info(f"✓ {profile.labels.get(name, name)} found")
        for name in report.missing_required:
            logger.error(f"❌ {profile.labels.get(name, name)} missing!")
        for name in report.missing_optional:
            logger.warning(f"⚠️ {profile.labels.get(name, name)} missing")
        logger.info(f"Final deployment size: {report.size_mb}MB")
        return report

    def rollback(self) -> bool:
        """Restore the hosting directory from the backup."""
        results = self.rollback_manager.execute_rollback(dry_run=False)
        if "error" in results:
            logger.warning(f"⚠️ {results['error']}")
            return False
        return bool(results["success"]) and not results["failed"]

    def _remove_temp_dir(self) -> bool:
        temp = self.settings.temp_path
        if temp.is_dir():
            shutil.rmtree(temp)
            logger.info("🧹 Temporary files removed")
            return True
        return False

    def cleanup_temp(self) -> List[str]:
        """Remove the temp dir and, unless configured to keep it, the archive."""
        removed = []
        if self._remove_temp_dir():
            removed.append(str(self.settings.temp_path))

        archive = self.settings.archive_path
        if not self.settings.keep_archive and archive.is_file():
            archive.unlink()
            removed.append(str(archive))
            logger.info("🧹 Deployment archive removed")
        return removed

    @log_execution_time
    def quick_deploy(self) -> DeploymentResult:
        """Extract the archive straight into the hosting directory.

        There is no backup, verification or rollback; existing files not in
        the archive are left in place.
        """
        archive = self._require_archive()
        deploy = self.settings.deploy_path

        result = DeploymentResult(
            deployment_id=create_deployment_id(QUICK_PROFILE),
            profile=QUICK_PROFILE,
        )
        state = self.state_manager
        state.start_deployment(result.deployment_id, QUICK_PROFILE)
        state.skip_phase(DeploymentPhase.BACKUP, "quick deploy")

        state.start_phase(DeploymentPhase.EXTRACT)
        deploy.mkdir(parents=True, exist_ok=True)
        try:
            extract_archive(archive, deploy)
        except DeploymentError as e:
            result.error = str(e)
            state.fail_phase(DeploymentPhase.EXTRACT, result.error)
            e.result = result
            raise
        state.complete_phase(DeploymentPhase.EXTRACT)

        state.start_phase(DeploymentPhase.INSTALL)
        apply_permissions(deploy, STATIC)
        state.complete_phase(DeploymentPhase.INSTALL)

        state.skip_phase(DeploymentPhase.VERIFY, "quick deploy")
        state.skip_phase(DeploymentPhase.START, "quick deploy")

        state.start_phase(DeploymentPhase.CLEANUP)
        removed = []
        if not self.settings.keep_archive:
            archive.unlink()
            removed.append(str(archive))
        state.complete_phase(DeploymentPhase.CLEANUP, {"removed": removed})

        result.size_mb = directory_size_mb(deploy)
        result.success = True
        state.complete_deployment()
        return result
