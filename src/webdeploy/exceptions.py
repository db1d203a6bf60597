"""Exception hierarchy for deployment failures."""
from typing import Optional, Any


class DeploymentError(Exception):
    """Base class for every error raised by a deployment step.

    Attributes:
        result: Optional DeploymentResult describing how far the deployment got
    """

    def __init__(self, message: str, result: Optional[Any] = None):
        super().__init__(message)
        self.result = result


class ArchiveError(DeploymentError):
    """The deployment archive is corrupt or contains unsafe members."""


class ArchiveNotFoundError(ArchiveError):
    """The deployment archive is not in the working directory."""


class ProfileDetectionError(DeploymentError):
    """No deployment profile matches the extracted build output."""


class VerificationError(DeploymentError):
    """A required file is missing from the hosting directory."""


class LaunchError(DeploymentError):
    """The standalone server could not be started or stopped."""
