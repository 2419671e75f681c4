"""
下载管理器

整合下载功能，实现下载队列管理、并发控制、重试、超时与原子放置。
"""

import asyncio
import inspect
import os
import zipfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

import aiohttp
from loguru import logger

from modsync.download.items import Downloadable, FetchContext, ResolvedFile, safe_join, strategy_for
from modsync.download.ledger import InstallLedger, LedgerEntry
from modsync.download.queue import DownloadQueue
from modsync.download.verifier import FileVerifier
from modsync.exceptions import (
    APIError,
    APINotFoundError,
    CorruptDownloadError,
    DownloadError,
    DownloadFileError,
    DownloadNetworkError,
    DownloadTimeoutError,
    ModSyncError,
    UnsupportedSourceError,
)
from modsync.models import ItemOutcome, ItemStatus, Settings


# 重试无意义的错误
NON_RETRYABLE = (UnsupportedSourceError, APINotFoundError, DownloadFileError)


@dataclass
class DownloadStats:
    """下载统计"""

    total: int = 0
    completed: int = 0
    failed: int = 0
    skipped: int = 0
    bytes_downloaded: int = 0


class DownloadManager:
    """下载管理器"""

    def __init__(
        self,
        context: FetchContext,
        ledger: InstallLedger,
        settings: Optional[Settings] = None,
        progress_callback: Optional[Callable[[ItemOutcome], Any]] = None,
    ):
        self.context = context
        self.client = context.client
        self.ledger = ledger
        self.settings = settings or context.settings
        self.max_concurrent = self.settings.max_concurrent
        self.max_retries = self.settings.max_retries
        self.retry_delay = self.settings.retry_delay
        self.timeout = self.settings.item_timeout
        self.queue = DownloadQueue()
        self.verifier = FileVerifier()
        self.stats = DownloadStats()
        self.outcomes: Dict[str, ItemOutcome] = {}
        self._progress_callback = progress_callback
        self._workers: List[asyncio.Task] = []

    async def enqueue(self, item: Downloadable) -> bool:
        """添加下载任务"""
        added = await self.queue.put(item, item.priority)
        if added:
            self.stats.total += 1
            logger.debug(f"[队列] {item.kind.value} '{item.name}' 已加入下载队列")
        return added

    async def _notify(self, outcome: ItemOutcome) -> None:
        self.outcomes[outcome.key] = outcome
        if self._progress_callback:
            result = self._progress_callback(outcome)
            if inspect.isawaitable(result):
                await result

    def _outcome(
        self,
        item: Downloadable,
        status: ItemStatus,
        path: Optional[Path] = None,
        error: Optional[ModSyncError] = None,
    ) -> ItemOutcome:
        return ItemOutcome(
            key=item.key,
            name=item.name,
            kind=item.kind.value,
            status=status,
            path=str(path) if path else None,
            error=error.to_dict() if error else None,
        )

    async def _entry_valid(self, entry: LedgerEntry) -> bool:
        """记录的文件仍在且（单文件时）SHA1 一致"""
        if not self.ledger.files_present(entry):
            return False
        if entry.sha1 and len(entry.files) == 1:
            return await self.verifier.verify(
                str(self.ledger.resolve(entry.files[0])), sha1=entry.sha1
            )
        return True

    async def install_item(self, item: Downloadable) -> ItemOutcome:
        """
        安装单个条目

        失败在重试耗尽后记录为 FAILED，不会抛出（取消除外）。
        """
        entry = self.ledger.get(item.key)
        if entry and entry.identity == item.identity and await self._entry_valid(entry):
            self.stats.skipped += 1
            logger.info(f"[跳过] '{item.name}' 已安装且校验通过")
            first = self.ledger.resolve(entry.files[0]) if entry.files else None
            return self._outcome(item, ItemStatus.PRESENT, first)

        try:
            strategy = strategy_for(item)
        except UnsupportedSourceError as e:
            return self._fail(item, e)

        await self._notify(self._outcome(item, ItemStatus.DOWNLOADING))
        last_error: Optional[ModSyncError] = None

        for attempt in range(self.max_retries + 1):
            try:
                resolved = await asyncio.wait_for(strategy(item, self.context), self.timeout)
                if resolved is None:
                    self.ledger.record(item.key, item.identity, [])
                    self.stats.completed += 1
                    logger.info(f"[完成] '{item.name}' 由实例元数据声明")
                    return self._outcome(item, ItemStatus.INSTALLED)

                files, sha1, fetched = await self._place(item, resolved)
                if entry and entry.identity != item.identity:
                    removed = self.ledger.remove_files(entry, keep=files)
                    if removed:
                        logger.info(f"[更新] 已移除 '{item.name}' 的旧文件 {len(removed)} 个")
                self.ledger.record(item.key, item.identity, files, sha1)

                if fetched:
                    self.stats.completed += 1
                    logger.success(f"[完成] '{item.name}' 下载完成")
                    return self._outcome(item, ItemStatus.INSTALLED, resolved.dest)
                self.stats.skipped += 1
                logger.info(f"[跳过] '{item.name}' 已存在且校验通过")
                return self._outcome(item, ItemStatus.PRESENT, resolved.dest)

            except asyncio.TimeoutError:
                last_error = DownloadTimeoutError(
                    f"'{item.name}' 超时 ({self.timeout}s)", context={"item": item.key}
                )
            except (DownloadError, APIError) as e:
                last_error = e
                if isinstance(e, NON_RETRYABLE):
                    break
            except aiohttp.ClientError as e:
                last_error = DownloadNetworkError(str(e), context={"item": item.key})
            except OSError as e:
                last_error = DownloadFileError(str(e), context={"item": item.key})

            if attempt < self.max_retries:
                delay = self.retry_delay * (2**attempt)
                logger.warning(
                    f"[重试] 下载 '{item.name}' 失败 (第 {attempt + 1} 次): {last_error}. "
                    f"{delay:.1f}s 后重试..."
                )
                await asyncio.sleep(delay)

        return self._fail(item, last_error)

    def _fail(self, item: Downloadable, error: Optional[ModSyncError]) -> ItemOutcome:
        self.stats.failed += 1
        logger.error(f"[错误] 下载 '{item.name}' 最终失败: {error}")
        return self._outcome(item, ItemStatus.FAILED, error=error)

    async def _place(self, item: Downloadable, resolved: ResolvedFile) -> Tuple[List[Path], Optional[str], bool]:
        """
        下载并放置文件

        Returns:
            (放置的文件列表, 单文件 SHA1, 是否实际下载)
        """
        dest = resolved.dest
        has_checksum = bool(resolved.sha1 or resolved.sha512)
        if (
            resolved.extract_to is None
            and has_checksum
            and await self.verifier.is_valid(str(dest), resolved.sha1, resolved.sha512)
        ):
            return [dest], await self.verifier.calc_sha1(str(dest)), False

        logger.info(f"[开始] 下载: {item.name}")
        dest.parent.mkdir(parents=True, exist_ok=True)
        part = dest.with_name(dest.name + ".part")
        try:
            size = await asyncio.wait_for(
                self.client.download(resolved.url, str(part), self._chunk_logger(item)),
                self.timeout,
            )
            self.stats.bytes_downloaded += size or 0
            if not await self.verifier.verify(str(part), resolved.sha1, resolved.sha512):
                raise CorruptDownloadError(
                    f"校验失败: {item.name}",
                    context={"item": item.key, "sha1": resolved.sha1},
                )
            os.replace(part, dest)
        finally:
            # 取消或失败时不留下截断文件
            if part.exists():
                part.unlink()

        if resolved.extract_to is not None:
            try:
                files = self._extract(dest, resolved.extract_to)
            finally:
                dest.unlink()
            return files, None, True

        for companion in resolved.companions:
            companion.touch(exist_ok=True)
        sha1 = await self.verifier.calc_sha1(str(dest))
        return [dest, *resolved.companions], sha1, True

    @staticmethod
    def _extract(archive: Path, target: Path) -> List[Path]:
        """解压 zip，拒绝逃出目标目录的条目"""
        files = []
        try:
            with zipfile.ZipFile(archive) as z:
                for info in z.infolist():
                    out = safe_join(target, info.filename)
                    if info.is_dir():
                        out.mkdir(parents=True, exist_ok=True)
                        continue
                    out.parent.mkdir(parents=True, exist_ok=True)
                    with z.open(info) as src, open(out, "wb") as dst:
                        while True:
                            chunk = src.read(65536)
                            if not chunk:
                                break
                            dst.write(chunk)
                    files.append(out)
        except zipfile.BadZipFile as e:
            raise CorruptDownloadError(f"无效的压缩包: {e}", context={"file": str(archive)})
        return files

    def _chunk_logger(self, item: Downloadable) -> Callable[[int, int], None]:
        last = [0.0]

        def on_chunk(downloaded: int, total: int) -> None:
            if total <= 0:
                return
            percent = downloaded / total * 100
            if percent - last[0] >= 5:
                logger.debug(f"[进度] {item.name}: {percent:.1f}%")
                last[0] = percent

        return on_chunk

    async def _worker(self):
        """下载工作线程"""
        while True:
            try:
                task = await self.queue.get()
            except asyncio.CancelledError:
                break

            try:
                outcome = await self.install_item(task.item)
                await self._notify(outcome)
            except asyncio.CancelledError:
                await self._notify(self._outcome(task.item, ItemStatus.CANCELLED))
                self.queue.task_done()
                break
            except Exception as e:
                # 工作线程不应该因为单个任务失败而退出
                logger.exception(f"[错误] 处理 '{task.item.name}' 时发生意外: {e}")
                await self._notify(
                    self._outcome(
                        task.item,
                        ItemStatus.FAILED,
                        error=DownloadError(str(e), context={"item": task.item.key}),
                    )
                )
            self.queue.task_done()

    async def start(self):
        """启动下载器"""
        logger.info(f"[启动] 下载器启动，最大并发数: {self.max_concurrent}")
        self._workers = [
            asyncio.create_task(self._worker(), name=f"downloader-{i}")
            for i in range(self.max_concurrent)
        ]

    async def wait_until_complete(self):
        """等待所有任务完成"""
        await self.queue.join()

    async def stop(self):
        """停止下载器"""
        logger.debug("[停止] 正在停止下载器...")
        for worker in self._workers:
            worker.cancel()

        if self._workers:
            await asyncio.gather(*self._workers, return_exceptions=True)
            self._workers.clear()
        logger.debug("[停止] 下载器已停止")

    async def run(self) -> Dict[str, ItemOutcome]:
        """运行下载器（启动并等待完成）"""
        await self.start()
        try:
            await self.wait_until_complete()
        finally:
            await self.stop()
        return dict(self.outcomes)

    def get_stats(self) -> DownloadStats:
        """获取下载统计"""
        return self.stats

    async def __aenter__(self):
        """异步上下文管理器入口"""
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """异步上下文管理器出口"""
        await self.stop()
