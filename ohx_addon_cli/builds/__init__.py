"""Build orchestration module.

This module handles:
- Build target discovery per architecture
- Running the container tool for build, inspect and push
- Assembling the multi-arch manifest list
- Per-target outcome tracking across all architectures
- Registry credential exchange
"""

from ohx_addon_cli.builds.models import BuildTarget
from ohx_addon_cli.builds.orchestrator import BuildOrchestrator, ProgressSink
from ohx_addon_cli.builds.runner import BuildExecutionError, PodmanBuilder
from ohx_addon_cli.builds.targets import discover_targets

__all__ = [
    "BuildExecutionError",
    "BuildOrchestrator",
    "BuildTarget",
    "PodmanBuilder",
    "ProgressSink",
    "discover_targets",
]
