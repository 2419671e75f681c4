"""
功能解析服务

根据清单默认值、上次安装记录和用户切换，计算实际启用的功能集合。
"""

from typing import Iterable, List, Optional, Set, Tuple

from loguru import logger

from modsync.models import Feature


class FeatureResolver:
    """
    功能解析器

    基线为上次记录的启用集合，没有记录时使用各功能的 default_enabled。
    modify_count 按切换事件增减：与基线不同则 +1，相同则 -1，不设下限。
    modified 直接比较当前集合与基线集合，不依赖计数器。
    """

    def __init__(
        self,
        features: Iterable[Feature],
        previous_enabled: Optional[Iterable[str]] = None,
    ):
        self.features: List[Feature] = list(features)
        self._known = {f.id for f in self.features}
        self.previous: Optional[Set[str]] = (
            set(previous_enabled) if previous_enabled is not None else None
        )
        if self.previous is not None:
            self.enabled: Set[str] = set(self.previous)
        else:
            self.enabled = {f.id for f in self.features if f.default_enabled}
        self.modify_count = 0

    @property
    def baseline(self) -> Set[str]:
        if self.previous is not None:
            return set(self.previous)
        return {f.id for f in self.features if f.default_enabled}

    @property
    def modified(self) -> bool:
        """当前集合是否偏离已安装基线"""
        if self.previous is None:
            return False
        return self._installable(self.enabled) != self._installable(self.previous)

    def _installable(self, ids: Set[str]) -> Set[str]:
        return ids & self._known

    def toggle(self, feature_id: str, enabled: bool) -> bool:
        """
        应用一次用户切换

        Returns:
            是否被接受（未知功能 ID 被忽略）
        """
        if feature_id not in self._known:
            logger.debug(f"[功能] 忽略未知功能切换: {feature_id}")
            return False

        if enabled:
            self.enabled.add(feature_id)
        else:
            self.enabled.discard(feature_id)

        if self.previous is not None:
            if (feature_id in self.previous) != enabled:
                self.modify_count += 1
            else:
                self.modify_count -= 1

        logger.debug(
            f"[功能] {feature_id} -> {'启用' if enabled else '禁用'} "
            f"(modify_count={self.modify_count})"
        )
        return True

    def is_enabled(self, feature_id: Optional[str]) -> bool:
        """无功能标记的条目始终启用"""
        return feature_id is None or feature_id in self.enabled

    def effective(self) -> Set[str]:
        return self._installable(self.enabled)


def resolve(
    features: Iterable[Feature],
    previous_enabled: Optional[Iterable[str]],
    toggles: Iterable[Tuple[str, bool]] = (),
) -> Tuple[Set[str], bool, int]:
    """
    一次性解析功能集合

    Returns:
        (effective_enabled, modified, modify_count)
    """
    resolver = FeatureResolver(features, previous_enabled)
    for feature_id, enabled in toggles:
        resolver.toggle(feature_id, enabled)
    return resolver.effective(), resolver.modified, resolver.modify_count
