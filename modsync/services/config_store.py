"""
配置存储服务

读取与原子写入本地 Config。
"""

import asyncio
import json
from pathlib import Path
from typing import Optional

from appdirs import user_config_dir
from loguru import logger

from modsync.exceptions import ConfigParseError, ConfigPersistenceError
from modsync.models import Config
from modsync.utils import write_bytes_atomic


def default_config_path() -> Path:
    return Path(user_config_dir("modsync", appauthor=False)) / "config.json"


class ConfigStore:
    """Config 文件存储"""

    def __init__(self, path: Optional[str] = None):
        self.path = Path(path) if path else default_config_path()

    def load(self) -> Config:
        """
        读取配置

        文件缺失或损坏时视为首次启动，不会抛出异常。
        """
        if not self.path.exists():
            logger.info(f"[配置] 未找到配置文件，视为首次启动: {self.path}")
            return Config(first_launch=True)

        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
            config = Config.from_dict(data)
        except (OSError, ValueError, ConfigParseError) as e:
            logger.warning(f"[配置] 配置文件损坏，视为首次启动: {e}")
            return Config(first_launch=True)

        logger.debug(f"[配置] 已加载 {len(config.sources)} 个来源记录")
        return config

    async def save(self, config: Config, retries: int = 2, delay: float = 0.5) -> None:
        """
        原子写入配置，失败时重试

        Raises:
            ConfigPersistenceError: 重试耗尽
        """
        content = json.dumps(config.to_dict(), indent=2).encode("utf-8")
        last_error: Optional[Exception] = None

        for attempt in range(retries + 1):
            try:
                await write_bytes_atomic(self.path, content)
                logger.debug(f"[配置] 已写入 {self.path}")
                return
            except OSError as e:
                last_error = e
                if attempt < retries:
                    logger.warning(
                        f"[重试] 写入配置失败 (第 {attempt + 1} 次): {e}"
                    )
                    await asyncio.sleep(delay * (2**attempt))

        raise ConfigPersistenceError(
            f"写入配置失败: {last_error}", context={"path": str(self.path)}
        )
