"""
启动器适配器

同一实现通过 LauncherSpec 参数化，覆盖 Prism、MultiMC（含兼容变体）与原版启动器。
"""

import base64
import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional

from loguru import logger

from modsync.exceptions import LauncherDirectoryUnwritableError
from modsync.launchers.base import InstanceRef, LauncherFamily, LauncherHandle, LauncherSpec
from modsync.models import LoaderSpec, LoaderType, Manifest
from modsync.utils import write_json_atomic


INSTANCE_CFG = "instance.cfg"
MMC_PACK = "mmc-pack.json"
LAUNCHER_PROFILES = "launcher_profiles.json"
ICON_DATA_PREFIX = "data:image/png;base64,"

# 加载器在 mmc-pack.json 中的组件
_LOADER_COMPONENTS = {
    LoaderType.FABRIC: ("net.fabricmc.fabric-loader", True),
    LoaderType.QUILT: ("org.quiltmc.quilt-loader", True),
    LoaderType.FORGE: ("net.minecraftforge", False),
    LoaderType.NEOFORGE: ("net.neoforged", False),
}
_INTERMEDIARY = "net.fabricmc.intermediary"
_MANAGED_UIDS = {"net.minecraft", _INTERMEDIARY} | {
    uid for uid, _ in _LOADER_COMPONENTS.values()
}


def read_instance_cfg(path: Path) -> Dict[str, str]:
    """读取 key=value 格式的 instance.cfg"""
    values: Dict[str, str] = {}
    if not path.exists():
        return values
    for line in path.read_text(encoding="utf-8", errors="replace").splitlines():
        line = line.strip()
        if not line or line.startswith(("#", "[")) or "=" not in line:
            continue
        key, _, value = line.partition("=")
        values[key.strip()] = value.strip()
    return values


def write_instance_cfg(path: Path, values: Dict[str, str]) -> None:
    path.write_text(
        "".join(f"{k}={v}\n" for k, v in values.items()), encoding="utf-8"
    )


def mmc_components(loader: LoaderSpec) -> List[dict]:
    """生成 mmc-pack.json 组件列表"""
    components = [
        {"uid": "net.minecraft", "version": loader.game_version, "important": True}
    ]
    uid, needs_intermediary = _LOADER_COMPONENTS[loader.type]
    if needs_intermediary:
        components.append(
            {
                "uid": _INTERMEDIARY,
                "version": loader.game_version,
                "cachedVolatile": True,
                "dependencyOnly": True,
            }
        )
    components.append({"uid": uid, "version": loader.version})
    return components


class LauncherAdapter:
    """启动器适配器"""

    def __init__(self, spec: LauncherSpec):
        self.spec = spec

    @property
    def family(self) -> LauncherFamily:
        return self.spec.family

    def _looks_like_root(self, path: Path) -> bool:
        if not path.is_dir():
            return False
        if not self.spec.markers or self.spec.paths:
            return True
        if self.family.instance_based and (path / self.spec.instances_dir).is_dir():
            return True
        return any((path / marker).exists() for marker in self.spec.markers)

    def locate(self) -> Optional[LauncherHandle]:
        """探测启动器安装位置，未找到返回 None"""
        for candidate in self.spec.candidates():
            if self._looks_like_root(candidate):
                logger.debug(f"[启动器] 找到 {self.spec.name}: {candidate}")
                return LauncherHandle(spec=self.spec, root=candidate)
        logger.debug(f"[启动器] 未找到 {self.spec.name}")
        return None

    def _instance_from_dir(self, handle: LauncherHandle, path: Path) -> InstanceRef:
        cfg = read_instance_cfg(path / INSTANCE_CFG)
        return InstanceRef(
            handle=handle,
            id=path.name,
            name=cfg.get("name", path.name),
            path=path,
            game_dir=path / self.spec.game_subdir,
        )

    def _vanilla_instance(self, handle: LauncherHandle, uuid: str, name: str) -> InstanceRef:
        path = handle.root / self.spec.vanilla_profiles_dir / uuid
        return InstanceRef(
            handle=handle, id=uuid, name=name, path=path, game_dir=path, synthetic=True
        )

    def list_instances(self, handle: LauncherHandle) -> List[InstanceRef]:
        """列出已有实例"""
        if not self.family.instance_based:
            profiles_dir = handle.root / self.spec.vanilla_profiles_dir
            if not profiles_dir.is_dir():
                return []
            return [
                self._vanilla_instance(handle, p.name, p.name)
                for p in sorted(profiles_dir.iterdir())
                if p.is_dir()
            ]

        instances_dir = handle.root / self.spec.instances_dir
        if not instances_dir.is_dir():
            return []
        return [
            self._instance_from_dir(handle, p)
            for p in sorted(instances_dir.iterdir())
            if p.is_dir() and (p / INSTANCE_CFG).exists()
        ]

    def find_instance(self, handle: LauncherHandle, manifest: Manifest) -> Optional[InstanceRef]:
        """按 uuid 优先、名称其次匹配已有实例"""
        instances = self.list_instances(handle)
        for instance in instances:
            if instance.id == manifest.uuid:
                return instance
        for instance in instances:
            if instance.name == manifest.name:
                return instance
        return None

    def ensure_instance(self, handle: LauncherHandle, manifest: Manifest) -> InstanceRef:
        """
        获取或创建清单对应的实例

        原版启动器返回合成实例，不写入实例元数据。

        Raises:
            LauncherDirectoryUnwritableError: 无法创建实例目录
        """
        if not self.family.instance_based:
            return self._vanilla_instance(handle, manifest.uuid, manifest.name)

        existing = self.find_instance(handle, manifest)
        if existing:
            logger.info(f"[启动器] 复用实例: {existing.describe()}")
            return existing

        path = handle.root / self.spec.instances_dir / manifest.uuid
        try:
            (path / self.spec.game_subdir).mkdir(parents=True, exist_ok=True)
            write_instance_cfg(
                path / INSTANCE_CFG,
                {"InstanceType": "OneSix", "name": manifest.name, "iconKey": "default"},
            )
        except OSError as e:
            raise LauncherDirectoryUnwritableError(
                f"无法创建实例目录: {e}", context={"path": str(path)}
            )
        logger.success(f"[启动器] 已创建实例: {path}")
        return self._instance_from_dir(handle, path)

    def instance_root(self, instance: InstanceRef) -> Path:
        """实例内容根目录"""
        return instance.game_dir

    def icon_path(self, instance: InstanceRef) -> Path:
        """Prism/MultiMC 图标文件位置，图标键即实例 ID"""
        return instance.handle.root / self.spec.icons_dir / f"{instance.id}.png"

    def has_icon(self, instance: InstanceRef) -> bool:
        """实例是否已设置整合包图标"""
        if self.family.instance_based:
            return self.icon_path(instance).exists()
        lp_path = instance.handle.root / LAUNCHER_PROFILES
        if not lp_path.exists():
            return False
        try:
            data = json.loads(lp_path.read_text(encoding="utf-8"))
        except ValueError:
            return False
        profile = data.get("profiles", {}).get(instance.id, {})
        return str(profile.get("icon", "")).startswith(ICON_DATA_PREFIX)

    def write_profile(
        self,
        instance: InstanceRef,
        loader: LoaderSpec,
        name: Optional[str] = None,
        icon: Optional[bytes] = None,
    ) -> None:
        """
        写入或合并启动器配置

        icon 为 PNG 内容：Prism/MultiMC 写入 icons/<id>.png 并设置 iconKey，
        原版启动器以 data URI 写入配置。

        Raises:
            LauncherDirectoryUnwritableError: 写入失败
        """
        try:
            if self.family.instance_based:
                self._write_mmc_profile(instance, loader, name, icon)
            else:
                self._write_vanilla_profile(instance, loader, name, icon)
        except (OSError, ValueError) as e:
            raise LauncherDirectoryUnwritableError(
                f"写入启动器配置失败: {e}", context={"instance": str(instance.path)}
            )

    def _write_mmc_profile(
        self, instance: InstanceRef, loader: LoaderSpec, name: Optional[str], icon: Optional[bytes]
    ) -> None:
        pack_path = instance.path / MMC_PACK
        kept: List[dict] = []
        if pack_path.exists():
            existing = json.loads(pack_path.read_text(encoding="utf-8"))
            kept = [
                c
                for c in existing.get("components", [])
                if c.get("uid") not in _MANAGED_UIDS
            ]
        write_json_atomic(
            pack_path,
            {"components": mmc_components(loader) + kept, "formatVersion": 1},
            indent=None,
        )

        cfg_path = instance.path / INSTANCE_CFG
        cfg = read_instance_cfg(cfg_path)
        cfg["InstanceType"] = "OneSix"
        cfg["name"] = name or cfg.get("name", instance.name)
        icon_path = self.icon_path(instance)
        if icon is not None:
            icon_path.parent.mkdir(parents=True, exist_ok=True)
            icon_path.write_bytes(icon)
        if icon_path.exists():
            cfg["iconKey"] = instance.id
        else:
            cfg.setdefault("iconKey", "default")
        write_instance_cfg(cfg_path, cfg)
        logger.success(f"[启动器] 已写入 {pack_path}")

    def _write_vanilla_profile(
        self, instance: InstanceRef, loader: LoaderSpec, name: Optional[str], icon: Optional[bytes]
    ) -> None:
        lp_path = instance.handle.root / LAUNCHER_PROFILES
        if lp_path.exists():
            data = json.loads(lp_path.read_text(encoding="utf-8"))
        else:
            data = {"profiles": {}, "settings": {}, "version": 3}
        profiles = data.setdefault("profiles", {})

        now = datetime.now(timezone.utc).isoformat()
        previous = profiles.get(instance.id, {})
        icon_value = previous.get("icon", "Furnace")
        if icon is not None:
            icon_value = ICON_DATA_PREFIX + base64.b64encode(icon).decode("ascii")
        profiles[instance.id] = {
            **previous,
            "name": name or instance.name,
            "type": "custom",
            "icon": icon_value,
            "lastVersionId": loader.version_id,
            "gameDir": str(instance.game_dir),
            "created": previous.get("created", now),
            "lastUsed": now,
        }
        instance.game_dir.mkdir(parents=True, exist_ok=True)
        write_json_atomic(lp_path, data)
        logger.success(f"[启动器] 已写入原版启动器配置: {instance.id}")
