"""
清单版本检查

拒绝引擎无法安全解释的清单版本。
"""

import re
from typing import Tuple, Union

from modsync.exceptions import UnsupportedManifestVersionError


CURRENT_MANIFEST_VERSION = "0.1.1"

_SEMVER_RE = re.compile(
    r"^v?(?P<major>\d+)(?:\.(?P<minor>\d+))?(?:\.(?P<patch>\d+))?"
    r"(?:-[0-9A-Za-z.-]+)?(?:\+[0-9A-Za-z.-]+)?$"
)


def parse_version(version: Union[str, int]) -> Tuple[int, int, int]:
    """
    解析语义化版本

    缺失的 minor/patch 视为 0，预发布与构建元数据不参与比较。

    Raises:
        ValueError: 无法解析
    """
    match = _SEMVER_RE.match(str(version).strip())
    if not match:
        raise ValueError(f"无效的语义化版本: {version!r}")
    return (
        int(match.group("major")),
        int(match.group("minor") or 0),
        int(match.group("patch") or 0),
    )


class VersionGate:
    """清单版本闸门"""

    def __init__(self, supported: str = CURRENT_MANIFEST_VERSION):
        self.supported = supported
        self._supported = parse_version(supported)

    def accepts(self, manifest_version: Union[str, int]) -> bool:
        try:
            return parse_version(manifest_version) <= self._supported
        except ValueError:
            return False

    def check(self, manifest_version: Union[str, int]) -> None:
        """
        检查清单版本

        Raises:
            UnsupportedManifestVersionError: 版本高于支持版本或无法解析
        """
        if not self.accepts(manifest_version):
            raise UnsupportedManifestVersionError(
                f"不支持的清单版本 '{manifest_version}' (支持至 {self.supported})",
                context={
                    "manifest_version": str(manifest_version),
                    "supported": self.supported,
                },
            )
