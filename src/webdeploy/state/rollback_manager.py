"""
Deployment rollback management.

Restores the hosting directory from the backup taken before the last
deployment.
"""

import logging
from pathlib import Path
from typing import Dict, Any, List, Optional, Union

from webdeploy.backup import BackupManager, is_non_empty_dir
from webdeploy.exceptions import LaunchError
from webdeploy.launcher import is_process_alive, read_pid, terminate_process_group
from webdeploy.state.deployment_state import DeploymentStateManager

logger = logging.getLogger(__name__)


class RollbackManager:
    """Manages rollback of the hosting directory to its backup.

    When pid_file is given, the server recorded in the hosting directory is
    stopped before its files are replaced, and a PID file restored from the
    backup is dropped unless its process is still alive.
    """

    def __init__(self, backup_manager: BackupManager,
                 state_manager: Optional[DeploymentStateManager] = None,
                 pid_file: Optional[str] = None):
        self.backup_manager = backup_manager
        self.state_manager = state_manager
        self.pid_file = pid_file

    def _pid_path(self) -> Optional[Path]:
        if self.pid_file is None:
            return None
        return self.backup_manager.deploy_dir / self.pid_file

    def _running_pid(self) -> Optional[int]:
        pid_path = self._pid_path()
        if pid_path is None:
            return None
        pid = read_pid(pid_path)
        if pid is not None and is_process_alive(pid):
            return pid
        return None

    def can_rollback(self) -> bool:
        """Check if rollback is possible."""
        return self.backup_manager.has_backup()

    def create_rollback_plan(self) -> Union[List[Dict[str, Any]], Dict[str, str]]:
        """Create a rollback plan based on the current backup."""
        if not self.can_rollback():
            return {"error": f"No backup available at {self.backup_manager.backup_dir}"}

        deploy_dir = self.backup_manager.deploy_dir
        plan = []

        running_pid = self._running_pid()
        if running_pid is not None:
            plan.append({
                "action": "stop_application",
                "target": f"PID {running_pid}",
                "priority": 0
            })

        if is_non_empty_dir(deploy_dir):
            plan.append({
                "action": "clear_deployment",
                "target": str(deploy_dir),
                "priority": 1
            })
        elif not deploy_dir.exists():
            plan.append({
                "action": "create_deployment_dir",
                "target": str(deploy_dir),
                "priority": 1
            })

        plan.append({
            "action": "restore_backup",
            "target": str(deploy_dir),
            "source": str(self.backup_manager.backup_dir),
            "priority": 2
        })

        return plan

    def _drop_stale_pid_file(self) -> None:
        pid_path = self._pid_path()
        if pid_path is None or not pid_path.exists():
            return
        pid = read_pid(pid_path)
        if pid is None or not is_process_alive(pid):
            pid_path.unlink()
            logger.info(f"Removed stale PID file restored from backup (PID {pid})")

    def execute_rollback(self, dry_run: bool = True) -> Dict[str, Any]:
        """Execute rollback plan."""
        plan = self.create_rollback_plan()

        if isinstance(plan, dict):
            return plan

        results = {
            "dry_run": dry_run,
            "success": [],
            "failed": []
        }

        if dry_run:
            for step in sorted(plan, key=lambda x: x["priority"]):
                results["success"].append({
                    "action": step["action"],
                    "target": step["target"],
                    "status": "would_run"
                })
            return results

        logger.info("🔄 Rolling back deployment...")
        try:
            running_pid = self._running_pid()
            if running_pid is not None:
                logger.info(f"Stopping application (PID {running_pid}) before restore")
                terminate_process_group(running_pid)
            restored = self.backup_manager.restore()
            if restored:
                self._drop_stale_pid_file()
        except (OSError, LaunchError) as e:
            logger.error(f"❌ Rollback failed: {e}")
            for step in plan:
                results["failed"].append({
                    "action": step["action"],
                    "target": step["target"],
                    "error": str(e)
                })
            return results

        for step in plan:
            bucket = results["success"] if restored else results["failed"]
            bucket.append({
                "action": step["action"],
                "target": step["target"],
                "status": "done" if restored else "not_run"
            })

        if restored:
            logger.info("✅ Rollback completed")
            if self.state_manager is not None:
                if self.state_manager.state is None:
                    self.state_manager.load_state()
                self.state_manager.mark_rolled_back()

        return results
