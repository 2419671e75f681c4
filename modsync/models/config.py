"""
配置数据模型

Settings 为引擎调优参数（只读），Config 为持久化的本地安装记录。
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Set

from modsync.exceptions import ConfigParseError


class RemovalPolicy(Enum):
    """已安装但不再选中的条目的处理策略"""

    SWEEP = "sweep"
    KEEP = "keep"


@dataclass
class CustomLauncher:
    """用户添加的 MultiMC 兼容启动器"""

    name: str
    path: str
    family: str = "multimc"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CustomLauncher":
        if not isinstance(data, dict) or not data.get("name") or not data.get("path"):
            raise ConfigParseError(
                "custom_launchers 条目需要 name 与 path", context={"entry": data}
            )
        return cls(
            name=str(data["name"]),
            path=str(data["path"]),
            family=str(data.get("family", "multimc")).lower(),
        )


@dataclass
class Settings:
    """引擎设置"""

    raw_root: str = "https://raw.githubusercontent.com/"
    api_root: str = "https://api.github.com/repos/"
    modrinth_root: str = "https://api.modrinth.com/v2"
    max_concurrent: int = 8
    max_retries: int = 2
    retry_delay: float = 1.0
    item_timeout: float = 120.0
    config_path: Optional[str] = None
    removal_policy: RemovalPolicy = RemovalPolicy.SWEEP
    custom_launchers: List[CustomLauncher] = field(default_factory=list)
    log_file: Optional[str] = None
    user_agent: str = "modsync/0.1.0"

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "Settings":
        """从设置文件内容创建 Settings，未知字段忽略"""
        data = dict(data or {})
        # 允许 [modsync] 表包裹
        if isinstance(data.get("modsync"), dict):
            data = data["modsync"]

        settings = cls()
        try:
            for key in ("raw_root", "api_root", "modrinth_root", "user_agent"):
                if key in data:
                    setattr(settings, key, str(data[key]))
            for key in ("config_path", "log_file"):
                if data.get(key):
                    setattr(settings, key, str(data[key]))
            if "max_concurrent" in data:
                settings.max_concurrent = int(data["max_concurrent"])
            if "max_retries" in data:
                settings.max_retries = int(data["max_retries"])
            if "retry_delay" in data:
                settings.retry_delay = float(data["retry_delay"])
            if "item_timeout" in data:
                settings.item_timeout = float(data["item_timeout"])
            if "removal_policy" in data:
                settings.removal_policy = RemovalPolicy(
                    str(data["removal_policy"]).lower()
                )
        except (TypeError, ValueError) as e:
            raise ConfigParseError(f"设置值无效: {e}")

        settings.custom_launchers = [
            CustomLauncher.from_dict(c) for c in data.get("custom_launchers") or []
        ]

        if settings.max_concurrent <= 0:
            raise ConfigParseError("max_concurrent 必须大于 0")
        if settings.max_retries < 0:
            raise ConfigParseError("max_retries 不能为负数")
        if settings.item_timeout <= 0:
            raise ConfigParseError("item_timeout 必须大于 0")
        for key in ("raw_root", "api_root"):
            if not getattr(settings, key).endswith("/"):
                setattr(settings, key, getattr(settings, key) + "/")
        settings.modrinth_root = settings.modrinth_root.rstrip("/")
        return settings


@dataclass
class LauncherChoice:
    """已选择的启动器：族类、名称及根目录"""

    family: str
    name: str
    path: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"family": self.family, "name": self.name, "path": self.path}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LauncherChoice":
        return cls(
            family=str(data["family"]),
            name=str(data.get("name", data["family"])),
            path=data.get("path"),
        )


@dataclass
class SourceRecord:
    """单个清单来源的安装记录"""

    installed_version: Optional[str] = None
    enabled_features: Set[str] = field(default_factory=set)
    modify_count: int = 0
    branch: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "installed_version": self.installed_version,
            "enabled_features": sorted(self.enabled_features),
            "modify_count": self.modify_count,
            "branch": self.branch,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SourceRecord":
        return cls(
            installed_version=data.get("installed_version"),
            enabled_features=set(data.get("enabled_features") or []),
            modify_count=int(data.get("modify_count", 0)),
            branch=data.get("branch"),
        )


@dataclass
class Config:
    """
    本地持久化配置

    由 InstallOrchestrator 独占写入。
    """

    launcher: Optional[LauncherChoice] = None
    first_launch: bool = True
    sources: Dict[str, SourceRecord] = field(default_factory=dict)

    def record_for(self, source: str) -> Optional[SourceRecord]:
        return self.sources.get(source)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "launcher": self.launcher.to_dict() if self.launcher else None,
            "first_launch": self.first_launch,
            "sources": {k: v.to_dict() for k, v in self.sources.items()},
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Config":
        if not isinstance(data, dict):
            raise ConfigParseError("配置文件必须是 JSON 对象")
        try:
            launcher = data.get("launcher")
            return cls(
                launcher=LauncherChoice.from_dict(launcher) if launcher else None,
                first_launch=bool(data.get("first_launch", False)),
                sources={
                    str(k): SourceRecord.from_dict(v)
                    for k, v in (data.get("sources") or {}).items()
                },
            )
        except (TypeError, ValueError, KeyError, AttributeError) as e:
            raise ConfigParseError(f"配置文件结构错误: {e}")
