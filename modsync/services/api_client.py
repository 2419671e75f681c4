"""
HTTP 客户端

提供清单获取、API JSON 请求（带缓存）和流式文件下载。
"""

import asyncio
import json
from collections import OrderedDict
from typing import Any, Callable, Optional

import aiofiles
import aiohttp
from loguru import logger

from modsync.exceptions import (
    APIError,
    APINotFoundError,
    APIRateLimitError,
    APIServerError,
    DownloadNetworkError,
    DownloadTimeoutError,
    MalformedManifestError,
)
from modsync.models import Settings


CACHE_SIZE = 100
CHUNK_SIZE = 8192


def manifest_url(raw_root: str, source: str, branch: str, path: str = "manifest.json") -> str:
    """<raw_root>/<source>/<branch>/<path>"""
    return f"{raw_root.rstrip('/')}/{source.strip('/')}/{branch}/{path.lstrip('/')}"


class HttpClient:
    """aiohttp 客户端封装"""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.settings = settings or Settings()
        self._session = session
        self._owned_session = session is None
        self._cache: "OrderedDict[str, Any]" = OrderedDict()

    @property
    def session(self) -> aiohttp.ClientSession:
        """获取或创建 aiohttp session"""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                headers={"User-Agent": self.settings.user_agent},
                timeout=aiohttp.ClientTimeout(total=self.settings.item_timeout),
            )
        return self._session

    def _remember(self, url: str, value: Any) -> None:
        self._cache[url] = value
        self._cache.move_to_end(url)
        while len(self._cache) > CACHE_SIZE:
            self._cache.popitem(last=False)

    async def get_json(
        self, url: str, params: Optional[dict] = None, cache: bool = True
    ) -> Optional[Any]:
        """
        发送 API 请求

        Returns:
            解析后的 JSON；资源不存在时返回 None
        """
        cache_key = f"{url}?{sorted(params.items())}" if params else url
        if cache and cache_key in self._cache:
            logger.debug(f"[缓存] 命中: {url}")
            return self._cache[cache_key]

        async with self.session.get(url, params=params) as response:
            if response.status == 200:
                data = await response.json(content_type=None)
            elif response.status == 404:
                data = None
            elif response.status == 429:
                raise APIRateLimitError("API 速率限制", response=response)
            elif response.status >= 500:
                raise APIServerError(
                    f"API 服务器错误 (状态码: {response.status})", response=response
                )
            else:
                raise APIError(
                    f"API 请求失败 (状态码: {response.status})", response=response
                )

        if cache:
            self._remember(cache_key, data)
        return data

    async def get_bytes(self, url: str) -> bytes:
        """获取小文件的完整内容（例如整合包图标）"""
        try:
            async with self.session.get(url) as response:
                if response.status != 200:
                    raise DownloadNetworkError(
                        f"HTTP {response.status}",
                        context={"url": url, "status": response.status},
                    )
                return await response.read()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise DownloadNetworkError(str(e), context={"url": url})

    async def fetch_manifest(self, source: str, branch: str) -> Any:
        """
        获取远程清单 JSON

        Raises:
            MalformedManifestError: 网络失败或 JSON 无法解析
        """
        url = manifest_url(self.settings.raw_root, source, branch)
        logger.info(f"[清单] 获取 {url}")
        try:
            async with self.session.get(url) as response:
                if response.status != 200:
                    raise MalformedManifestError(
                        f"获取清单失败 (状态码: {response.status})",
                        context={"url": url, "status": response.status},
                    )
                body = await response.read()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise MalformedManifestError(
                f"获取清单失败: {e}", context={"url": url}
            )

        try:
            return json.loads(body.decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as e:
            raise MalformedManifestError(
                f"清单不是有效的 UTF-8 JSON: {e}", context={"url": url}
            )

    async def download(
        self,
        url: str,
        file_path: str,
        on_chunk: Optional[Callable[[int, int], None]] = None,
    ) -> int:
        """
        流式下载到指定路径

        Args:
            url: 下载地址
            file_path: 写入路径（调用方负责临时文件与原子替换）
            on_chunk: 进度回调 (已下载字节, 总字节)

        Returns:
            写入的字节数
        """
        try:
            async with self.session.get(url) as response:
                if response.status != 200:
                    raise DownloadNetworkError(
                        f"HTTP {response.status}",
                        context={"url": url, "status": response.status},
                    )

                total_size = int(response.headers.get("Content-Length", 0))
                downloaded = 0
                async with aiofiles.open(file_path, "wb") as f:
                    async for chunk in response.content.iter_chunked(CHUNK_SIZE):
                        await f.write(chunk)
                        downloaded += len(chunk)
                        if on_chunk:
                            on_chunk(downloaded, total_size)
                return downloaded
        except asyncio.TimeoutError:
            raise DownloadTimeoutError(
                f"下载超时: {url}", context={"url": url}
            )
        except aiohttp.ClientError as e:
            raise DownloadNetworkError(
                f"网络错误: {e}", context={"url": url}
            )

    async def close(self):
        """关闭客户端"""
        if self._owned_session and self._session and not self._session.closed:
            await self._session.close()

    async def __aenter__(self):
        """异步上下文管理器入口"""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """异步上下文管理器出口"""
        await self.close()
