"""
ModSync 服务层

包含业务逻辑服务：HTTP 客户端、版本检查、功能解析、配置存储。
"""

from modsync.services.api_client import HttpClient
from modsync.services.version_gate import VersionGate, CURRENT_MANIFEST_VERSION
from modsync.services.feature_resolver import FeatureResolver
from modsync.services.config_store import ConfigStore

__all__ = [
    "HttpClient",
    "VersionGate",
    "CURRENT_MANIFEST_VERSION",
    "FeatureResolver",
    "ConfigStore",
]
