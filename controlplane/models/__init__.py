"""SQLAlchemy ORM models for the controlplane."""

from controlplane.models.base import Base
from controlplane.models.mirror import MirrorCredential, MirrorRecord, WorkspaceSession

__all__ = [
    "Base",
    "MirrorCredential",
    "MirrorRecord",
    "WorkspaceSession",
]
