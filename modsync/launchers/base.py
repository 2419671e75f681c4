"""
启动器基础类型

不同启动器之间的差异以数据（目录约定）表示，而不是各自的实现类。
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Tuple

from modsync.utils import get_app_data, get_minecraft_folder


class LauncherFamily(Enum):
    """目录布局族"""

    VANILLA = "vanilla"
    PRISM = "prism"
    MULTIMC = "multimc"

    @property
    def instance_based(self) -> bool:
        return self is not LauncherFamily.VANILLA


@dataclass(frozen=True)
class LauncherSpec:
    """
    启动器描述

    Attributes:
        name: 启动器名称（内置为族名，自定义为用户给定名称）
        family: 目录布局族
        folder_names: 在系统数据目录下探测的文件夹名
        paths: 明确给出的根目录（自定义或手动输入），存在时不再探测
        extra_paths: 额外探测位置（例如 Flatpak 安装）
        markers: 用于确认根目录的标记文件或目录
    """

    name: str
    family: LauncherFamily
    folder_names: Tuple[str, ...] = ()
    paths: Tuple[str, ...] = ()
    extra_paths: Tuple[str, ...] = ()
    markers: Tuple[str, ...] = ()
    instances_dir: str = "instances"
    game_subdir: str = ".minecraft"
    icons_dir: str = "icons"
    vanilla_profiles_dir: str = ".modsync"

    def candidates(self):
        """按优先级返回候选根目录"""
        if self.paths:
            return [Path(p).expanduser() for p in self.paths]
        if self.family is LauncherFamily.VANILLA:
            found = [get_minecraft_folder()]
        else:
            base = get_app_data()
            found = [base / name for name in self.folder_names]
        found.extend(Path(p).expanduser() for p in self.extra_paths)
        return found


@dataclass(frozen=True)
class LauncherHandle:
    """已定位的启动器"""

    spec: LauncherSpec
    root: Path

    @property
    def name(self) -> str:
        return self.spec.name

    @property
    def family(self) -> LauncherFamily:
        return self.spec.family


@dataclass(frozen=True)
class InstanceRef:
    """
    启动器中的一个实例

    path 为实例目录，game_dir 为内容放置的根目录（mods/ 等所在处）。
    原版启动器没有实例概念，使用一个合成实例。
    """

    handle: LauncherHandle
    id: str
    name: str
    path: Path
    game_dir: Path
    synthetic: bool = field(default=False, compare=False)

    @property
    def loader_in_metadata(self) -> bool:
        """加载器是否由实例元数据声明（无需下载）"""
        return self.handle.family.instance_based

    def describe(self) -> str:
        return f"{self.handle.name}:{self.name} ({self.game_dir})"
