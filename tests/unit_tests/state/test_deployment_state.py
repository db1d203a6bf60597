import json
import signal
import subprocess

import pytest

from webdeploy.backup import BackupManager
from webdeploy.state.deployment_state import (
    DeploymentPhase,
    DeploymentStateManager,
    DeploymentStatus,
    create_deployment_id,
)
from webdeploy.state.rollback_manager import RollbackManager
from tests.fixtures.deploy_fixtures import write_tree


class TestDeploymentStateManager:

    @pytest.fixture(autouse=True)
    def setup_teardown(self, tmp_path):
        self.state_file = tmp_path / ".deployment_state.json"
        self.manager = DeploymentStateManager(self.state_file)
        yield

    def test_start_deployment_creates_pending_phases(self):
        state = self.manager.start_deployment("static-1", "static")

        assert state.status == DeploymentStatus.IN_PROGRESS.value
        assert set(state.phases) == {phase.value for phase in DeploymentPhase}
        assert all(p.status == "pending" for p in state.phases.values())
        assert self.state_file.exists()

    def test_phase_lifecycle_is_persisted(self):
        self.manager.start_deployment("static-1", "static")
        self.manager.start_phase(DeploymentPhase.BACKUP)
        self.manager.complete_phase(DeploymentPhase.BACKUP, {"backup_created": True})
        self.manager.skip_phase(DeploymentPhase.START, "static profile has no server")

        loaded = DeploymentStateManager(self.state_file).load_state()

        assert loaded.phases["backup"].status == "completed"
        assert loaded.phases["backup"].details == {"backup_created": True}
        assert loaded.phases["start"].status == "skipped"
        assert loaded.current_phase == "backup"

    def test_fail_phase_marks_deployment_failed(self):
        self.manager.start_deployment("static-1", "static")
        self.manager.start_phase(DeploymentPhase.VERIFY)
        self.manager.fail_phase(DeploymentPhase.VERIFY, "index.html missing")

        summary = self.manager.get_status_summary()
        assert summary["status"] == "failed"
        assert summary["error"] == "index.html missing"
        assert summary["phases"]["verify"]["error"] == "index.html missing"

    def test_complete_and_roll_back(self):
        self.manager.start_deployment("static-1", "static")
        for phase in DeploymentPhase:
            self.manager.start_phase(phase)
            self.manager.complete_phase(phase)
        self.manager.complete_deployment()
        assert self.manager.get_status_summary()["progress"] == "6/6"

        self.manager.mark_rolled_back()
        data = json.loads(self.state_file.read_text())
        assert data["status"] == "rolled_back"
        assert data["phases"]["install"]["status"] == "rolled_back"

    def test_phase_operations_need_active_deployment(self):
        with pytest.raises(ValueError):
            self.manager.start_phase(DeploymentPhase.BACKUP)

    def test_load_corrupt_state_returns_none(self):
        self.state_file.write_text("{not json")
        assert self.manager.load_state() is None
        assert self.manager.get_status_summary() == {"status": "no_deployment"}

    def test_cleanup_state_file(self):
        self.manager.start_deployment("static-1", "static")
        assert self.manager.cleanup_state_file() is True
        assert not self.state_file.exists()
        assert self.manager.cleanup_state_file() is False


def test_create_deployment_id_prefix():
    assert create_deployment_id("standalone").startswith("standalone-")


class TestRollbackManager:

    def test_plan_without_backup_is_error(self, workspace, existing_site):
        manager = RollbackManager(BackupManager(existing_site, workspace / "public_html_backup"))

        assert not manager.can_rollback()
        assert "error" in manager.create_rollback_plan()
        assert "error" in manager.execute_rollback(dry_run=False)

    def test_dry_run_changes_nothing(self, workspace, existing_site):
        backup = BackupManager(existing_site, workspace / "public_html_backup")
        backup.create_backup()
        (existing_site / "index.html").write_text("new")

        results = RollbackManager(backup).execute_rollback(dry_run=True)

        assert results["dry_run"] is True
        assert [step["action"] for step in results["success"]] == ["clear_deployment", "restore_backup"]
        assert (existing_site / "index.html").read_text() == "new"

    def test_execute_restores_and_marks_state(self, workspace, existing_site):
        backup = BackupManager(existing_site, workspace / "public_html_backup")
        backup.create_backup()
        write_tree(existing_site, {"index.html": "new", "extra.html": "extra"})

        state = DeploymentStateManager(workspace / ".deployment_state.json")
        state.start_deployment("static-1", "static")
        state.start_phase(DeploymentPhase.INSTALL)
        state.complete_phase(DeploymentPhase.INSTALL)

        results = RollbackManager(backup, DeploymentStateManager(state.state_file)).execute_rollback(dry_run=False)

        assert not results["failed"]
        assert (existing_site / "index.html").read_text() == "<html>old</html>"
        assert not (existing_site / "extra.html").exists()
        reloaded = DeploymentStateManager(state.state_file).load_state()
        assert reloaded.status == "rolled_back"

    def test_plan_creates_missing_deploy_dir(self, workspace, existing_site):
        backup = BackupManager(existing_site, workspace / "public_html_backup")
        backup.create_backup()
        for entry in existing_site.iterdir():
            entry.unlink()
        existing_site.rmdir()

        plan = RollbackManager(backup).create_rollback_plan()
        assert plan[0]["action"] == "create_deployment_dir"

        RollbackManager(backup).execute_rollback(dry_run=False)
        assert (existing_site / "index.html").exists()

    def test_restored_stale_pid_file_is_dropped(self, workspace, existing_site):
        (existing_site / "app.pid").write_text("999999999")
        backup = BackupManager(existing_site, workspace / "public_html_backup")
        backup.create_backup()

        results = RollbackManager(backup, pid_file="app.pid").execute_rollback(dry_run=False)

        assert not results["failed"]
        assert (existing_site / "index.html").exists()
        assert not (existing_site / "app.pid").exists()

    def test_running_server_is_stopped_before_restore(self, workspace, existing_site):
        backup = BackupManager(existing_site, workspace / "public_html_backup")
        backup.create_backup()
        server = subprocess.Popen(["sleep", "30"], start_new_session=True)
        (existing_site / "app.pid").write_text(str(server.pid))

        try:
            manager = RollbackManager(backup, pid_file="app.pid")
            plan = manager.create_rollback_plan()
            assert plan[0] == {"action": "stop_application", "target": f"PID {server.pid}", "priority": 0}

            results = manager.execute_rollback(dry_run=False)

            assert not results["failed"]
            assert server.wait(timeout=5) == -signal.SIGTERM
            assert not (existing_site / "app.pid").exists()
        finally:
            if server.poll() is None:
                server.kill()
                server.wait()
