"""
ModSync - Minecraft 整合包同步安装工具

按远程清单把模组、光影、资源包与加载器同步安装到本地启动器。
"""

__version__ = "0.1.0"

from modsync.exceptions import ModSyncError
from modsync.models import InstallerProfile, Manifest, RunReport, RunState, Settings
from modsync.events import Event, EventBus, EventType
from modsync.orchestrator import InstallOrchestrator

__all__ = [
    "__version__",
    "ModSyncError",
    "InstallerProfile",
    "Manifest",
    "RunReport",
    "RunState",
    "Settings",
    "Event",
    "EventBus",
    "EventType",
    "InstallOrchestrator",
]
