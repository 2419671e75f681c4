"""
ModSync 启动器层

包含启动器描述、适配器与注册表。
"""

from modsync.launchers.base import (
    LauncherFamily,
    LauncherSpec,
    LauncherHandle,
    InstanceRef,
)
from modsync.launchers.adapter import LauncherAdapter
from modsync.launchers.registry import (
    detect_launchers,
    parse_choice,
    choice_for,
    resolve_launcher,
)

__all__ = [
    "LauncherFamily",
    "LauncherSpec",
    "LauncherHandle",
    "InstanceRef",
    "LauncherAdapter",
    "detect_launchers",
    "parse_choice",
    "choice_for",
    "resolve_launcher",
]
