"""
运行状态模型

运行状态机、单项结果、运行报告以及返回给表现层的 InstallerProfile。
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional

from modsync.models.config import LauncherChoice
from modsync.models.manifest import Manifest


class RunState(Enum):
    """安装运行状态"""

    IDLE = "idle"
    MANIFEST_FETCHING = "manifest_fetching"
    VERSION_CHECKING = "version_checking"
    FEATURE_RESOLVING = "feature_resolving"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    LAUNCHER_RESOLVING = "launcher_resolving"
    AWAITING_LAUNCHER = "awaiting_launcher"
    DOWNLOADING = "downloading"
    PROFILE_WRITING = "profile_writing"
    DONE = "done"
    CANCELLED = "cancelled"
    ERROR = "error"


class ItemStatus(Enum):
    """单项状态"""

    DOWNLOADING = "downloading"
    INSTALLED = "installed"
    PRESENT = "present"
    SKIPPED_FEATURE = "skipped_feature"
    REMOVED = "removed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class ItemOutcome:
    """单项结果"""

    key: str
    name: str
    kind: str
    status: ItemStatus
    path: Optional[str] = None
    error: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "name": self.name,
            "kind": self.kind,
            "status": self.status.value,
            "path": self.path,
            "error": self.error,
        }


@dataclass
class RunReport:
    """一次运行的汇总报告"""

    source: str
    branch: str
    state: RunState = RunState.IDLE
    modpack_version: Optional[str] = None
    outcomes: List[ItemOutcome] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def by_status(self, *statuses: ItemStatus) -> List[ItemOutcome]:
        return [o for o in self.outcomes if o.status in statuses]

    @property
    def installed(self) -> List[ItemOutcome]:
        return self.by_status(ItemStatus.INSTALLED, ItemStatus.PRESENT)

    @property
    def failed(self) -> List[ItemOutcome]:
        return self.by_status(ItemStatus.FAILED)

    @property
    def skipped(self) -> List[ItemOutcome]:
        return self.by_status(ItemStatus.SKIPPED_FEATURE, ItemStatus.REMOVED)

    @property
    def partial(self) -> bool:
        return bool(self.failed)

    def outcome(self, key: str) -> Optional[ItemOutcome]:
        for o in self.outcomes:
            if o.key == key:
                return o
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source": self.source,
            "branch": self.branch,
            "state": self.state.value,
            "modpack_version": self.modpack_version,
            "outcomes": [o.to_dict() for o in self.outcomes],
            "warnings": list(self.warnings),
        }


@dataclass(frozen=True)
class InstallerProfile:
    """
    返回给表现层的只读快照

    每次会话由 Manifest + Config 重新计算，不直接持久化。
    """

    manifest: Manifest
    source: str
    branch: str
    enabled_features: FrozenSet[str]
    installed: bool = False
    update_available: bool = False
    modified: bool = False
    modify_count: int = 0
    launcher: Optional[LauncherChoice] = None

    @property
    def needs_apply(self) -> bool:
        """本地状态与全新安装结果不一致"""
        return not self.installed or self.update_available or self.modified
