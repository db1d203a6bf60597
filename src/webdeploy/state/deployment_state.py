"""
Deployment State Management and Tracking
Records the phases of the latest deployment in a JSON file so that status
and rollback commands can report on it after the deploying process exits.
"""
import json
import logging
import time
from typing import Dict, Any, Optional, Union
from pathlib import Path
from dataclasses import dataclass, asdict, field
from enum import Enum

logger = logging.getLogger(__name__)


class DeploymentPhase(Enum):
    """Deployment phases in order."""
    BACKUP = "backup"
    EXTRACT = "extract"
    INSTALL = "install"
    VERIFY = "verify"
    START = "start"
    CLEANUP = "cleanup"


class DeploymentStatus(Enum):
    """Status of a deployment or of one of its phases."""
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"
    ROLLED_BACK = "rolled_back"


@dataclass
class PhaseState:
    """State of a single deployment phase."""
    phase: str
    status: str
    started_at: Optional[float] = None
    completed_at: Optional[float] = None
    duration_seconds: Optional[float] = None
    details: Dict[str, Any] = field(default_factory=dict)
    error_message: Optional[str] = None


@dataclass
class DeploymentState:
    """Complete deployment state tracking."""
    deployment_id: str
    profile: str
    started_at: float
    phases: Dict[str, PhaseState]
    current_phase: Optional[str] = None
    status: str = DeploymentStatus.IN_PROGRESS.value
    completed_at: Optional[float] = None
    total_duration: Optional[float] = None
    error_message: Optional[str] = None


class DeploymentStateManager:
    """Manages deployment state tracking."""

    def __init__(self, state_file: Union[str, Path] = ".deployment_state.json"):
        self.state_file = Path(state_file)
        self.state: Optional[DeploymentState] = None

    def start_deployment(self, deployment_id: str, profile: str) -> DeploymentState:
        """Start tracking a new deployment, replacing any previous record."""
        self.state = DeploymentState(
            deployment_id=deployment_id,
            profile=profile,
            started_at=time.time(),
            phases={
                phase.value: PhaseState(phase=phase.value, status=DeploymentStatus.PENDING.value)
                for phase in DeploymentPhase
            },
        )
        self._save_state()
        logger.info(f"🚀 Started deployment tracking: {deployment_id} ({profile})")
        return self.state

    def _require_state(self) -> DeploymentState:
        if not self.state:
            raise ValueError("No active deployment")
        return self.state

    def set_profile(self, profile: str) -> None:
        self._require_state().profile = profile
        self._save_state()

    def start_phase(self, phase: DeploymentPhase) -> None:
        """Mark a phase as started."""
        state = self._require_state()
        phase_state = state.phases[phase.value]
        phase_state.status = DeploymentStatus.IN_PROGRESS.value
        phase_state.started_at = time.time()

        state.current_phase = phase.value
        self._save_state()
        logger.debug(f"📋 Phase started: {phase.value}")

    def _finish_phase(self, phase_state: PhaseState, status: DeploymentStatus) -> None:
        phase_state.status = status.value
        phase_state.completed_at = time.time()
        if phase_state.started_at:
            phase_state.duration_seconds = phase_state.completed_at - phase_state.started_at

    def complete_phase(self, phase: DeploymentPhase, details: Optional[Dict[str, Any]] = None) -> None:
        """Mark a phase as completed, recording what it produced."""
        state = self._require_state()
        phase_state = state.phases[phase.value]
        self._finish_phase(phase_state, DeploymentStatus.COMPLETED)
        if details:
            phase_state.details.update(details)
        self._save_state()

        duration_str = f" in {phase_state.duration_seconds:.1f}s" if phase_state.duration_seconds else ""
        logger.debug(f"✅ Phase completed: {phase.value}{duration_str}")

    def skip_phase(self, phase: DeploymentPhase, reason: str) -> None:
        """Mark a phase as intentionally not run."""
        state = self._require_state()
        phase_state = state.phases[phase.value]
        phase_state.status = DeploymentStatus.SKIPPED.value
        phase_state.details["reason"] = reason
        self._save_state()

    def fail_phase(self, phase: DeploymentPhase, error_message: str) -> None:
        """Mark a phase, and with it the deployment, as failed."""
        state = self._require_state()
        phase_state = state.phases[phase.value]
        self._finish_phase(phase_state, DeploymentStatus.FAILED)
        phase_state.error_message = error_message

        state.status = DeploymentStatus.FAILED.value
        state.error_message = error_message
        state.completed_at = time.time()
        state.total_duration = state.completed_at - state.started_at
        self._save_state()

        logger.error(f"❌ Phase failed: {phase.value} - {error_message}")

    def complete_deployment(self) -> None:
        """Mark the entire deployment as completed."""
        state = self._require_state()
        state.status = DeploymentStatus.COMPLETED.value
        state.completed_at = time.time()
        state.total_duration = state.completed_at - state.started_at
        state.current_phase = None
        self._save_state()

        logger.info(f"🎉 Deployment completed: {state.deployment_id} in {state.total_duration:.1f}s")

    def mark_rolled_back(self) -> None:
        """Mark completed phases and the deployment as rolled back."""
        if not self.state:
            return

        for phase_state in self.state.phases.values():
            if phase_state.status == DeploymentStatus.COMPLETED.value:
                phase_state.status = DeploymentStatus.ROLLED_BACK.value

        self.state.status = DeploymentStatus.ROLLED_BACK.value
        self.state.current_phase = None
        self._save_state()

    def load_state(self) -> Optional[DeploymentState]:
        """Load deployment state from file."""
        if not self.state_file.exists():
            return None

        try:
            with open(self.state_file, 'r', encoding='utf-8') as f:
                data = json.load(f)

            data['phases'] = {
                name: PhaseState(**phase_data)
                for name, phase_data in data['phases'].items()
            }
            self.state = DeploymentState(**data)
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.warning(f"⚠️ Failed to load deployment state: {e}")
            return None

        logger.debug(f"📋 Loaded deployment state: {self.state.deployment_id}")
        return self.state

    def _save_state(self) -> None:
        """Save deployment state to file."""
        if not self.state:
            return

        try:
            with open(self.state_file, 'w', encoding='utf-8') as f:
                json.dump(asdict(self.state), f, indent=2)
        except OSError as e:
            # State is informational only
            logger.error(f"❌ Failed to save deployment state: {e}")

    def cleanup_state_file(self) -> bool:
        """Remove deployment state file."""
        self.state = None
        if self.state_file.exists():
            self.state_file.unlink()
            logger.info(f"🗑️ Cleaned up state file: {self.state_file}")
            return True
        return False

    def get_status_summary(self) -> Dict[str, Any]:
        """Get deployment status summary."""
        if not self.state:
            return {"status": "no_deployment"}

        completed_phases = sum(1 for phase in self.state.phases.values()
                               if phase.status == DeploymentStatus.COMPLETED.value)
        total_phases = len(self.state.phases)

        return {
            "deployment_id": self.state.deployment_id,
            "profile": self.state.profile,
            "status": self.state.status,
            "current_phase": self.state.current_phase,
            "progress": f"{completed_phases}/{total_phases}",
            "duration": self.state.total_duration,
            "started_at": self.state.started_at,
            "error": self.state.error_message,
            "phases": {
                name: {
                    "status": phase.status,
                    "duration": phase.duration_seconds,
                    "error": phase.error_message
                } for name, phase in self.state.phases.items()
            }
        }


def create_deployment_id(profile: str) -> str:
    """Create unique deployment ID."""
    timestamp = int(time.time() * 1000)
    return f"{profile}-{timestamp}"
