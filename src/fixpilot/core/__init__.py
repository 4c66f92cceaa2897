"""Core business logic components.

This module exports the main business logic classes:
- ErrorLifecycleManager: Owns error records, the audit log and the stats
- AssistanceGateway: Turns AI provider calls into lifecycle transitions
- ChannelHub / ChannelClient: The daemon <-> dashboard event channel
- FileWatcher, Verifier, PatchApplier: The daemon's eyes, brain and hands
- Dashboard / Daemon: Orchestrators for the two processes
"""

from fixpilot.core.channel import ChannelClient, ChannelHub
from fixpilot.core.daemon import Daemon
from fixpilot.core.dashboard import Dashboard
from fixpilot.core.gateway import AssistanceGateway
from fixpilot.core.lifecycle import ChangeKind, ErrorLifecycleManager, LifecycleChange
from fixpilot.core.patch_applier import PatchApplier
from fixpilot.core.simulator import SyntheticErrorSource
from fixpilot.core.verifier import Verifier
from fixpilot.core.watcher import FileWatcher

__all__ = [
    "AssistanceGateway",
    "ChangeKind",
    "ChannelClient",
    "ChannelHub",
    "Daemon",
    "Dashboard",
    "ErrorLifecycleManager",
    "FileWatcher",
    "LifecycleChange",
    "PatchApplier",
    "SyntheticErrorSource",
    "Verifier",
]
