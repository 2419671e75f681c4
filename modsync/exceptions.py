"""
ModSync 统一异常体系

提供分层的异常结构，支持错误代码、上下文信息和 JSON 序列化。
"""

from typing import Any, Dict, Optional

import aiohttp


class ModSyncError(Exception):
    """ModSync 基础异常类"""

    # 致命错误会中止当前运行
    fatal: bool = True

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or self._get_default_code()
        self.context = context or {}

    def _get_default_code(self) -> str:
        """获取默认错误代码"""
        return "E000"

    @property
    def kind(self) -> str:
        """错误类型名称（供表现层显示）"""
        return self.__class__.__name__

    def to_dict(self) -> Dict[str, Any]:
        """将异常转换为字典格式"""
        return {
            "error": True,
            "code": self.code,
            "message": self.message,
            "context": self.context,
            "type": self.kind,
        }

    def __str__(self) -> str:
        if self.code:
            return f"[{self.code}] {self.message}"
        return self.message


class ManifestError(ModSyncError):
    """清单相关错误"""

    def _get_default_code(self) -> str:
        return "E100"


class MalformedManifestError(ManifestError):
    """清单无法获取或解析"""

    def _get_default_code(self) -> str:
        return "E101"


class ManifestValidationError(MalformedManifestError):
    """清单结构合法但内容不一致（例如引用了不存在的功能）"""

    def _get_default_code(self) -> str:
        return "E102"


class UnsupportedManifestVersionError(ManifestError):
    """清单版本高于引擎支持的版本"""

    def _get_default_code(self) -> str:
        return "E110"


class APIError(ModSyncError):
    """API 相关错误"""

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        response: Optional[aiohttp.ClientResponse] = None,
    ):
        super().__init__(message, code, context)
        self.response = response
        if response is not None:
            self.context["status_code"] = response.status
            self.context["url"] = str(response.url)

    def _get_default_code(self) -> str:
        return "E200"


class APINotFoundError(APIError):
    """API 资源不存在"""

    def _get_default_code(self) -> str:
        return "E404"


class APIRateLimitError(APIError):
    """API 速率限制"""

    def _get_default_code(self) -> str:
        return "E429"


class APIServerError(APIError):
    """API 服务器错误"""

    def _get_default_code(self) -> str:
        return "E500"


class DownloadError(ModSyncError):
    """下载相关错误（单项可恢复）"""

    fatal = False

    def _get_default_code(self) -> str:
        return "E300"


class DownloadNetworkError(DownloadError):
    """下载网络错误"""

    def _get_default_code(self) -> str:
        return "E301"


class CorruptDownloadError(DownloadError):
    """下载校验错误"""

    def _get_default_code(self) -> str:
        return "E302"


class DownloadFileError(DownloadError):
    """下载文件操作错误"""

    def _get_default_code(self) -> str:
        return "E303"


class DownloadTimeoutError(DownloadError):
    """下载超时"""

    def _get_default_code(self) -> str:
        return "E304"


class UnsupportedSourceError(DownloadError):
    """不支持的来源或加载器"""

    def _get_default_code(self) -> str:
        return "E305"


class LauncherError(ModSyncError):
    """启动器相关错误"""

    def _get_default_code(self) -> str:
        return "E400"


class NoLauncherFoundError(LauncherError):
    """未找到受支持的启动器，需要用户选择"""

    fatal = False

    def _get_default_code(self) -> str:
        return "E401"


class LauncherDirectoryUnwritableError(LauncherError):
    """启动器目录不可写"""

    def _get_default_code(self) -> str:
        return "E402"


class ConfigError(ModSyncError):
    """配置相关错误"""

    def _get_default_code(self) -> str:
        return "E600"


class ConfigParseError(ConfigError):
    """配置解析错误"""

    def _get_default_code(self) -> str:
        return "E601"


class ConfigPersistenceError(ConfigError):
    """配置写入失败"""

    fatal = False

    def _get_default_code(self) -> str:
        return "E602"


class RunError(ModSyncError):
    """运行控制错误"""

    def _get_default_code(self) -> str:
        return "E700"


class RunInProgressError(RunError):
    """同一来源已有运行中的任务"""

    def _get_default_code(self) -> str:
        return "E700"


class RunCancelledError(RunError):
    """运行被用户取消"""

    def _get_default_code(self) -> str:
        return "E701"


class InvalidStateError(RunError):
    """当前状态不允许该操作"""

    def _get_default_code(self) -> str:
        return "E702"


__all__ = [
    # 基础异常
    "ModSyncError",
    # 清单异常
    "ManifestError",
    "MalformedManifestError",
    "ManifestValidationError",
    "UnsupportedManifestVersionError",
    # API 异常
    "APIError",
    "APINotFoundError",
    "APIRateLimitError",
    "APIServerError",
    # 下载异常
    "DownloadError",
    "DownloadNetworkError",
    "CorruptDownloadError",
    "DownloadFileError",
    "DownloadTimeoutError",
    "UnsupportedSourceError",
    # 启动器异常
    "LauncherError",
    "NoLauncherFoundError",
    "LauncherDirectoryUnwritableError",
    # 配置异常
    "ConfigError",
    "ConfigParseError",
    "ConfigPersistenceError",
    # 运行控制
    "RunError",
    "RunInProgressError",
    "RunCancelledError",
    "InvalidStateError",
]
