"""
启动器注册表

内置启动器描述、用户自定义的兼容启动器，以及启动器选择的解析。
"""

from typing import List, Optional

from loguru import logger

from modsync.launchers.adapter import LauncherAdapter
from modsync.launchers.base import LauncherFamily, LauncherHandle, LauncherSpec
from modsync.models import LauncherChoice, Settings


VANILLA = LauncherSpec(
    name="vanilla",
    family=LauncherFamily.VANILLA,
    markers=("launcher_profiles.json", "versions"),
)

PRISM = LauncherSpec(
    name="prism",
    family=LauncherFamily.PRISM,
    folder_names=("PrismLauncher",),
    extra_paths=("~/.var/app/org.prismlauncher.PrismLauncher/data/PrismLauncher",),
    markers=("prismlauncher.cfg",),
)

MULTIMC = LauncherSpec(
    name="multimc",
    family=LauncherFamily.MULTIMC,
    folder_names=("multimc", "MultiMC"),
    extra_paths=("~/MultiMC", "~/multimc"),
    markers=("multimc.cfg",),
)

BUILTIN_SPECS = (PRISM, MULTIMC, VANILLA)


def custom_specs(settings: Settings) -> List[LauncherSpec]:
    """用户在设置中添加的兼容启动器"""
    specs = []
    for custom in settings.custom_launchers:
        try:
            family = LauncherFamily(custom.family)
        except ValueError:
            logger.warning(f"[启动器] 未知的启动器族 '{custom.family}'，跳过 {custom.name}")
            continue
        specs.append(_spec_with_path(custom.name, family, custom.path))
    return specs


def _spec_with_path(name: str, family: LauncherFamily, path: str) -> LauncherSpec:
    base = {spec.family: spec for spec in BUILTIN_SPECS}[family]
    return LauncherSpec(
        name=name,
        family=family,
        paths=(path,),
        markers=base.markers,
    )


def all_specs(settings: Settings) -> List[LauncherSpec]:
    return custom_specs(settings) + list(BUILTIN_SPECS)


def detect_launchers(settings: Settings) -> List[LauncherHandle]:
    """探测所有可用的启动器"""
    found = []
    for spec in all_specs(settings):
        handle = LauncherAdapter(spec).locate()
        if handle:
            found.append(handle)
    return found


def parse_choice(text: str, settings: Optional[Settings] = None) -> LauncherChoice:
    """
    解析启动器选择字符串

    支持: vanilla / prism / multimc / <自定义名称> / <族>:<路径>
    """
    text = text.strip()
    family, sep, path = text.partition(":")
    # Windows 盘符路径（如 C:\...）不是族前缀
    if sep and len(family) > 1 and family.lower() in {f.value for f in LauncherFamily}:
        return LauncherChoice(family=family.lower(), name=family.lower(), path=path)

    for custom in (settings.custom_launchers if settings else []):
        if custom.name == text:
            return LauncherChoice(family=custom.family, name=custom.name, path=custom.path)

    lowered = text.lower()
    if lowered in {f.value for f in LauncherFamily}:
        return LauncherChoice(family=lowered, name=lowered)
    raise ValueError(f"未知的启动器: {text}")


def choice_for(handle: LauncherHandle) -> LauncherChoice:
    return LauncherChoice(
        family=handle.family.value, name=handle.name, path=str(handle.root)
    )


def spec_for_choice(choice: LauncherChoice, settings: Settings) -> LauncherSpec:
    family = LauncherFamily(choice.family)
    if choice.path:
        return _spec_with_path(choice.name, family, choice.path)
    for spec in all_specs(settings):
        if spec.name == choice.name:
            return spec
    return {spec.family: spec for spec in BUILTIN_SPECS}[family]


def resolve_launcher(
    choice: Optional[LauncherChoice], settings: Settings
) -> Optional[LauncherHandle]:
    """
    将启动器选择解析为已定位的启动器

    未给出选择时返回第一个探测到的启动器；全部未找到返回 None。
    """
    if choice is not None:
        try:
            spec = spec_for_choice(choice, settings)
        except ValueError:
            logger.warning(f"[启动器] 无效的启动器选择: {choice}")
            return None
        return LauncherAdapter(spec).locate()

    found = detect_launchers(settings)
    return found[0] if found else None
