"""
ModSync 数据模型包

包含清单模型、配置模型和运行状态模型。
"""

from modsync.models.manifest import (
    LoaderType,
    ItemKind,
    Feature,
    LoaderSpec,
    ContentItem,
    Include,
    InstallableItem,
    Manifest,
)
from modsync.models.config import (
    RemovalPolicy,
    CustomLauncher,
    Settings,
    LauncherChoice,
    SourceRecord,
    Config,
)
from modsync.models.state import (
    RunState,
    ItemStatus,
    ItemOutcome,
    RunReport,
    InstallerProfile,
)

__all__ = [
    # 清单模型
    "LoaderType",
    "ItemKind",
    "Feature",
    "LoaderSpec",
    "ContentItem",
    "Include",
    "InstallableItem",
    "Manifest",
    # 配置模型
    "RemovalPolicy",
    "CustomLauncher",
    "Settings",
    "LauncherChoice",
    "SourceRecord",
    "Config",
    # 运行状态
    "RunState",
    "ItemStatus",
    "ItemOutcome",
    "RunReport",
    "InstallerProfile",
]
