"""
Deployment state tracking and rollback.

Persists the phases of the latest deployment and restores the hosting
directory from its backup.
"""
