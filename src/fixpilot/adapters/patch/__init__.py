"""Patch writers used by the lifecycle manager."""

from .local import LocalPatchWriter
from .remote import RemotePatchWriter

__all__ = ["LocalPatchWriter", "RemotePatchWriter"]
