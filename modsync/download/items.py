"""
可下载条目

Mod / Shaderpack / Resourcepack / Loader / Include 统一为带类型标签的 Downloadable，
通过 (类型, 来源) → 解析策略 的查找表决定如何获得字节流与放置路径。
"""

from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple
from urllib.parse import urlparse

from loguru import logger

from modsync.download.queue import Priority
from modsync.exceptions import (
    APINotFoundError,
    DownloadFileError,
    UnsupportedSourceError,
)
from modsync.launchers.base import InstanceRef
from modsync.models import (
    ContentItem,
    Include,
    InstallableItem,
    ItemKind,
    LoaderSpec,
    LoaderType,
    Manifest,
    Settings,
)
from modsync.services.api_client import manifest_url


FABRIC_META = "https://meta.fabricmc.net/v2/versions/loader"
QUILT_META = "https://meta.quiltmc.org/v3/versions/loader"


@dataclass(frozen=True)
class Downloadable:
    """带类型标签的可下载条目"""

    kind: ItemKind
    item: InstallableItem

    @classmethod
    def of(cls, item: InstallableItem) -> "Downloadable":
        return cls(kind=item.kind, item=item)

    @property
    def key(self) -> str:
        return self.item.key

    @property
    def name(self) -> str:
        return self.item.name

    @property
    def identity(self) -> Tuple[str, ...]:
        return self.item.identity

    @property
    def feature_id(self) -> Optional[str]:
        return self.item.feature_id

    @property
    def source(self) -> str:
        if isinstance(self.item, LoaderSpec):
            return self.item.type.value
        return self.item.source

    @property
    def priority(self) -> Priority:
        if self.kind is ItemKind.LOADER:
            return Priority.HIGH
        if self.kind is ItemKind.MOD:
            return Priority.NORMAL
        return Priority.LOW


@dataclass(frozen=True)
class ResolvedFile:
    """
    解析结果

    Attributes:
        url: 下载地址
        dest: 最终放置路径
        sha1 / sha512: 提供方给出的校验值
        extract_to: 下载后解压到该目录（zip），解压后删除压缩包
        companions: 需要一并创建的空文件
    """

    url: str
    dest: Path
    sha1: Optional[str] = None
    sha512: Optional[str] = None
    extract_to: Optional[Path] = None
    companions: Tuple[Path, ...] = ()


@dataclass
class FetchContext:
    """解析策略所需的上下文"""

    client: Any
    settings: Settings
    manifest: Manifest
    source: str
    branch: str
    instance: InstanceRef

    @property
    def game_dir(self) -> Path:
        return self.instance.game_dir


# None 表示无需下载（例如由实例元数据声明的加载器）
Strategy = Callable[[Downloadable, FetchContext], Awaitable[Optional[ResolvedFile]]]


def safe_join(root: Path, relative: str) -> Path:
    """拼接相对路径，拒绝逃出根目录"""
    parts = PurePosixPath(relative.replace("\\", "/")).parts
    if not parts or any(p == ".." for p in parts) or parts[0] == "/":
        raise DownloadFileError(
            f"非法的相对路径: {relative}", context={"path": relative}
        )
    return root.joinpath(*parts)


def _filename_from_url(url: str) -> str:
    name = PurePosixPath(urlparse(url).path).name
    if not name:
        raise DownloadFileError(f"无法从地址确定文件名: {url}", context={"url": url})
    return name


def _content_dir(item: Downloadable, ctx: FetchContext) -> Path:
    return ctx.game_dir / item.kind.folder


def _primary_file(version: dict) -> Optional[dict]:
    """获取主文件信息"""
    files = version.get("files", [])
    if not files:
        return None

    # 优先选择 primary 文件
    for file in files:
        if file.get("primary", False):
            return file

    # 否则返回第一个文件
    return files[0]


async def resolve_modrinth(item: Downloadable, ctx: FetchContext) -> Optional[ResolvedFile]:
    """通过 Modrinth 项目 ID/slug 与版本号定位文件"""
    content: ContentItem = item.item
    url = f"{ctx.settings.modrinth_root}/project/{content.location}/version"
    versions = await ctx.client.get_json(url)
    if versions is None:
        raise APINotFoundError(
            f"Modrinth 项目不存在: {content.location}", context={"item": item.key}
        )

    loader_type = ctx.manifest.loader.type.value
    for version in versions:
        if content.version not in (version.get("version_number"), version.get("id")):
            continue
        loaders = version.get("loaders") or []
        if (
            item.kind is ItemKind.SHADERPACK
            or "minecraft" in loaders
            or loader_type in loaders
        ):
            file = _primary_file(version)
            if file is None:
                continue
            hashes = file.get("hashes") or {}
            return ResolvedFile(
                url=file["url"],
                dest=_content_dir(item, ctx) / file["filename"],
                sha1=hashes.get("sha1"),
                sha512=hashes.get("sha512"),
            )

    raise APINotFoundError(
        f"'{content.name}' 没有匹配的版本 {content.version} ({loader_type})",
        context={"item": item.key, "version": content.version},
    )


async def resolve_ddl(item: Downloadable, ctx: FetchContext) -> Optional[ResolvedFile]:
    """直链下载"""
    content: ContentItem = item.item
    return ResolvedFile(
        url=content.location,
        dest=_content_dir(item, ctx) / _filename_from_url(content.location),
        sha1=content.sha1,
        sha512=content.sha512,
    )


async def resolve_raw_include(item: Downloadable, ctx: FetchContext) -> Optional[ResolvedFile]:
    """清单仓库中的文件，原样复制到实例根目录的相同相对路径"""
    include: Include = item.item
    if urlparse(include.location).scheme in ("http", "https"):
        return ResolvedFile(
            url=include.location,
            dest=ctx.game_dir / _filename_from_url(include.location),
        )
    return ResolvedFile(
        url=manifest_url(ctx.settings.raw_root, ctx.source, ctx.branch, include.location),
        dest=safe_join(ctx.game_dir, include.location),
    )


async def resolve_release_include(item: Downloadable, ctx: FetchContext) -> Optional[ResolvedFile]:
    """分支同名 Release 中的 <名称>.zip，解压到实例根目录"""
    include: Include = item.item
    url = f"{ctx.settings.api_root}{ctx.source.strip('/')}/releases"
    releases = await ctx.client.get_json(url) or []

    release = next((r for r in releases if r.get("tag_name") == ctx.branch), None)
    if release is None:
        raise APINotFoundError(
            f"未找到分支 '{ctx.branch}' 对应的 Release", context={"item": item.key}
        )

    asset_name = include.location if include.location.endswith(".zip") else f"{include.location}.zip"
    for asset in release.get("assets") or []:
        if asset.get("name") == asset_name:
            return ResolvedFile(
                url=asset["browser_download_url"],
                dest=ctx.game_dir / asset_name,
                extract_to=ctx.game_dir,
            )
    raise APINotFoundError(
        f"Release 中没有资源 {asset_name}", context={"item": item.key}
    )


async def resolve_loader(item: Downloadable, ctx: FetchContext) -> Optional[ResolvedFile]:
    """
    加载器安装

    Prism/MultiMC 族由 mmc-pack.json 声明加载器，无需下载；
    原版启动器下载 Fabric/Quilt 的版本 JSON 并放置空 jar。
    """
    loader: LoaderSpec = item.item
    if ctx.instance.loader_in_metadata:
        return None

    if loader.type is LoaderType.FABRIC:
        base = FABRIC_META
    elif loader.type is LoaderType.QUILT:
        base = QUILT_META
    else:
        raise UnsupportedSourceError(
            f"原版启动器不支持自动安装 {loader.type.value}，请使用其官方安装器",
            context={"loader": loader.type.value},
        )

    version_dir = ctx.instance.handle.root / "versions" / loader.version_id
    return ResolvedFile(
        url=f"{base}/{loader.game_version}/{loader.version}/profile/json",
        dest=version_dir / f"{loader.version_id}.json",
        companions=(version_dir / f"{loader.version_id}.jar",),
    )


STRATEGIES: Dict[Tuple[ItemKind, str], Strategy] = {
    (ItemKind.MOD, "modrinth"): resolve_modrinth,
    (ItemKind.SHADERPACK, "modrinth"): resolve_modrinth,
    (ItemKind.RESOURCEPACK, "modrinth"): resolve_modrinth,
    (ItemKind.MOD, "ddl"): resolve_ddl,
    (ItemKind.SHADERPACK, "ddl"): resolve_ddl,
    (ItemKind.RESOURCEPACK, "ddl"): resolve_ddl,
    (ItemKind.INCLUDE, "raw"): resolve_raw_include,
    (ItemKind.INCLUDE, "release"): resolve_release_include,
    **{(ItemKind.LOADER, t.value): resolve_loader for t in LoaderType},
}


def strategy_for(item: Downloadable) -> Strategy:
    """
    查找解析策略

    Raises:
        UnsupportedSourceError: 未知来源
    """
    strategy = STRATEGIES.get((item.kind, item.source))
    if strategy is None:
        raise UnsupportedSourceError(
            f"不支持的来源 '{item.source}' ({item.kind.value})",
            context={"item": item.key, "source": item.source},
        )
    return strategy


def plan(
    manifest: Manifest, is_enabled: Callable[[Optional[str]], bool]
) -> Tuple[List[Downloadable], List[Downloadable]]:
    """
    根据启用的功能划分条目

    Returns:
        (selected, disabled)，加载器始终被选中
    """
    selected = [Downloadable.of(manifest.loader)]
    disabled = []
    for item in manifest.items():
        if is_enabled(item.feature_id):
            selected.append(Downloadable.of(item))
        else:
            disabled.append(Downloadable.of(item))
    logger.debug(f"[计划] 选中 {len(selected)} 项，功能禁用 {len(disabled)} 项")
    return selected, disabled
