"""
Deployment tooling for pre-built web front ends on shared hosting.

Contains archive extraction, backup and rollback of the hosting directory,
deployment profiles for static exports and standalone Node servers, and the
launcher that starts the standalone server.
"""

__version__ = "1.0.0"
