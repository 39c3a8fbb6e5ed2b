"""CodeForge: Docker container lifecycle and readiness state for workspaces."""

__version__ = "0.1.0"
