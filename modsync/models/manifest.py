"""
清单数据模型

定义远程清单（manifest.json）的类型化表示及结构校验。
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

from modsync.exceptions import MalformedManifestError, ManifestValidationError


class LoaderType(Enum):
    """模组加载器"""

    FABRIC = "fabric"
    FORGE = "forge"
    QUILT = "quilt"
    NEOFORGE = "neoforge"


class ItemKind(Enum):
    """可安装项类型"""

    MOD = "mod"
    SHADERPACK = "shaderpack"
    RESOURCEPACK = "resourcepack"
    LOADER = "loader"
    INCLUDE = "include"

    @property
    def folder(self) -> Optional[str]:
        """实例根目录下的放置目录，加载器与 include 无固定目录"""
        return _KIND_FOLDERS.get(self)


_KIND_FOLDERS = {
    ItemKind.MOD: "mods",
    ItemKind.SHADERPACK: "shaderpacks",
    ItemKind.RESOURCEPACK: "resourcepacks",
}


def _require(data: Dict[str, Any], key: str, where: str) -> Any:
    if not isinstance(data, dict):
        raise MalformedManifestError(
            f"{where} 必须是对象", context={"where": where}
        )
    if key not in data or data[key] is None:
        raise MalformedManifestError(
            f"{where} 缺少必需字段 '{key}'", context={"where": where, "field": key}
        )
    return data[key]


def _feature_ref(data: Dict[str, Any]) -> Optional[str]:
    """读取条目的功能 ID；旧格式用 id="default" 表示始终安装"""
    ref = data.get("feature")
    if ref is None:
        ref = data.get("id")
        if ref == "default":
            ref = None
    return str(ref) if ref is not None else None


@dataclass(frozen=True)
class Feature:
    """可选功能分组"""

    id: str
    name: str
    description: str = ""
    default_enabled: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Feature":
        default = data.get("default_enabled", data.get("default", False))
        return cls(
            id=str(_require(data, "id", "feature")),
            name=str(data.get("name", data["id"])),
            description=str(data.get("description", "")),
            default_enabled=bool(default),
        )


@dataclass(frozen=True)
class LoaderSpec:
    """加载器声明"""

    type: LoaderType
    version: str
    game_version: str

    kind = ItemKind.LOADER

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LoaderSpec":
        raw_type = str(_require(data, "type", "loader")).lower()
        try:
            loader_type = LoaderType(raw_type)
        except ValueError:
            raise MalformedManifestError(
                f"不支持的加载器类型: {raw_type}", context={"loader": raw_type}
            )
        version = data.get("loader_version", data.get("version"))
        game_version = data.get("game_version", data.get("minecraft_version"))
        if not version or not game_version:
            raise MalformedManifestError(
                "loader 需要 version 与 minecraft_version", context={"loader": data}
            )
        return cls(type=loader_type, version=str(version), game_version=str(game_version))

    @property
    def key(self) -> str:
        return "loader"

    @property
    def name(self) -> str:
        return f"{self.type.value}-loader"

    @property
    def identity(self) -> Tuple[str, ...]:
        return (self.type.value, self.version, self.game_version)

    @property
    def version_id(self) -> str:
        """原版启动器中的版本 ID"""
        return f"{self.type.value}-loader-{self.version}-{self.game_version}"

    @property
    def feature_id(self) -> Optional[str]:
        return None

    def to_dict(self) -> Dict[str, str]:
        return {
            "type": self.type.value,
            "version": self.version,
            "minecraft_version": self.game_version,
        }


@dataclass(frozen=True)
class ContentItem:
    """
    模组、光影包、资源包

    三者结构相同，通过 kind 区分放置目录。
    """

    kind: ItemKind
    name: str
    source: str
    location: str
    version: str
    feature_id: Optional[str] = None
    sha1: Optional[str] = None
    sha512: Optional[str] = None
    authors: Tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, kind: ItemKind, data: Dict[str, Any]) -> "ContentItem":
        where = kind.value
        authors = data.get("authors") or []
        return cls(
            kind=kind,
            name=str(_require(data, "name", where)),
            source=str(_require(data, "source", where)).lower(),
            location=str(_require(data, "location", where)),
            version=str(_require(data, "version", where)),
            feature_id=_feature_ref(data),
            sha1=data.get("sha1"),
            sha512=data.get("sha512"),
            authors=tuple(
                a.get("name", "") if isinstance(a, dict) else str(a) for a in authors
            ),
        )

    @property
    def key(self) -> str:
        return f"{self.kind.value}:{self.name}"

    @property
    def identity(self) -> Tuple[str, ...]:
        """变更检测用的标识 (name, source, location, version)"""
        return (self.name, self.source, self.location, self.version)


@dataclass(frozen=True)
class Include:
    """原样复制到实例根目录的额外文件"""

    location: str
    feature_id: Optional[str] = None
    source: str = "raw"

    kind = ItemKind.INCLUDE

    @classmethod
    def from_dict(cls, data: Union[str, Dict[str, Any]]) -> "Include":
        if isinstance(data, str):
            return cls(location=data)
        return cls(
            location=str(_require(data, "location", "include")),
            feature_id=_feature_ref(data),
            source=str(data.get("source", "raw")).lower(),
        )

    @property
    def name(self) -> str:
        return self.location

    @property
    def key(self) -> str:
        return f"include:{self.location}"

    @property
    def identity(self) -> Tuple[str, ...]:
        return (self.location, self.source)


InstallableItem = Union[ContentItem, Include, LoaderSpec]


@dataclass
class Manifest:
    """远程清单"""

    manifest_version: str
    modpack_version: str
    name: str
    uuid: str
    loader: LoaderSpec
    mods: List[ContentItem] = field(default_factory=list)
    shaderpacks: List[ContentItem] = field(default_factory=list)
    resourcepacks: List[ContentItem] = field(default_factory=list)
    include: List[Include] = field(default_factory=list)
    features: List[Feature] = field(default_factory=list)
    subtitle: str = ""
    description: str = ""
    icon: bool = False

    @staticmethod
    def read_version(data: Any) -> str:
        """
        读取清单版本

        manifest_version 是唯一在版本检查前被信任的字段。
        """
        if not isinstance(data, dict):
            raise MalformedManifestError("清单必须是 JSON 对象")
        version = data.get("manifest_version")
        if version is None or isinstance(version, bool):
            raise MalformedManifestError("清单缺少 manifest_version 字段")
        return str(version)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Manifest":
        """从 JSON 字典解析并校验清单"""
        version = cls.read_version(data)
        try:
            manifest = cls(
                manifest_version=version,
                modpack_version=str(_require(data, "modpack_version", "manifest")),
                name=str(_require(data, "name", "manifest")),
                uuid=str(_require(data, "uuid", "manifest")),
                loader=LoaderSpec.from_dict(_require(data, "loader", "manifest")),
                mods=[
                    ContentItem.from_dict(ItemKind.MOD, m)
                    for m in data.get("mods") or []
                ],
                shaderpacks=[
                    ContentItem.from_dict(ItemKind.SHADERPACK, s)
                    for s in data.get("shaderpacks") or []
                ],
                resourcepacks=[
                    ContentItem.from_dict(ItemKind.RESOURCEPACK, r)
                    for r in data.get("resourcepacks") or []
                ],
                include=[Include.from_dict(i) for i in data.get("include") or []],
                features=[Feature.from_dict(f) for f in data.get("features") or []],
                subtitle=str(data.get("subtitle", "")),
                description=str(data.get("description", "")),
                icon=bool(data.get("icon", False)),
            )
        except (TypeError, AttributeError, KeyError) as e:
            raise MalformedManifestError(f"清单结构错误: {e}")
        manifest.validate()
        return manifest

    def validate(self) -> None:
        """
        校验清单

        功能 ID 与条目键（同类条目的名称）必须唯一，条目引用的功能必须已声明。
        """
        seen = set()
        for feature in self.features:
            if feature.id in seen:
                raise ManifestValidationError(
                    f"功能 ID 重复: {feature.id}", context={"feature": feature.id}
                )
            seen.add(feature.id)

        keys = set()
        for item in self.items():
            if item.key in keys:
                raise ManifestValidationError(
                    f"条目重复: {item.key}", context={"item": item.key}
                )
            keys.add(item.key)
            if item.feature_id is not None and item.feature_id not in seen:
                raise ManifestValidationError(
                    f"'{item.name}' 引用了不存在的功能 '{item.feature_id}'",
                    context={"item": item.key, "feature": item.feature_id},
                )

    def content_items(self) -> List[ContentItem]:
        return [*self.mods, *self.shaderpacks, *self.resourcepacks]

    def items(self) -> List[Union[ContentItem, Include]]:
        """所有受功能控制的条目（不含加载器）"""
        return [*self.content_items(), *self.include]

    def get_feature(self, feature_id: str) -> Optional[Feature]:
        for feature in self.features:
            if feature.id == feature_id:
                return feature
        return None
