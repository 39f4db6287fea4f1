"""Artifact versioning for pipeline stages."""

from .version_store import VersionStore

__all__ = ["VersionStore"]
