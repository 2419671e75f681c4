"""
ModSync 下载层

包含可下载条目、下载队列、文件校验、安装记录与下载管理器。
"""

from modsync.download.items import (
    Downloadable,
    FetchContext,
    ResolvedFile,
    STRATEGIES,
    plan,
    strategy_for,
)
from modsync.download.queue import DownloadQueue, DownloadTask, Priority
from modsync.download.verifier import FileVerifier
from modsync.download.ledger import InstallLedger, LedgerEntry
from modsync.download.manager import DownloadManager, DownloadStats

__all__ = [
    "Downloadable",
    "FetchContext",
    "ResolvedFile",
    "STRATEGIES",
    "plan",
    "strategy_for",
    "DownloadQueue",
    "DownloadTask",
    "Priority",
    "FileVerifier",
    "InstallLedger",
    "LedgerEntry",
    "DownloadManager",
    "DownloadStats",
]
