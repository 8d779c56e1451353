"""Host checkout inspection and in-sandbox workspace synchronization."""

from .host import HostWorkspace
from .patch import PatchArtifact, normalize_patch_filenames
from .sync import WorkspaceSyncProtocol

__all__ = [
    "HostWorkspace",
    "PatchArtifact",
    "WorkspaceSyncProtocol",
    "normalize_patch_filenames",
]
