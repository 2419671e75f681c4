"""
文件校验器

实现 SHA1/SHA512 校验、文件存在性检查、文件完整性验证。
"""

import hashlib
import os
from typing import Optional

import aiofiles


class FileVerifier:
    """文件校验器"""

    @staticmethod
    async def calc_hash(file_path: str, algorithm: str = "sha1") -> Optional[str]:
        """
        计算文件的哈希值

        Args:
            file_path: 文件路径
            algorithm: 哈希算法名称

        Returns:
            十六进制哈希值或 None（如果文件不存在）
        """
        if not os.path.isfile(file_path):
            return None

        digest = hashlib.new(algorithm)
        try:
            async with aiofiles.open(file_path, "rb") as f:
                while True:
                    data = await f.read(65536)
                    if not data:
                        break
                    digest.update(data)
            return digest.hexdigest()
        except (IOError, OSError):
            return None

    @staticmethod
    async def calc_sha1(file_path: str) -> Optional[str]:
        return await FileVerifier.calc_hash(file_path, "sha1")

    @staticmethod
    async def verify(
        file_path: str,
        sha1: Optional[str] = None,
        sha512: Optional[str] = None,
    ) -> bool:
        """
        校验文件哈希是否匹配

        Returns:
            是否匹配（如果没有预期值则返回 True）
        """
        if sha512:
            current = await FileVerifier.calc_hash(file_path, "sha512")
            if current is None or current.lower() != sha512.lower():
                return False
        if sha1:
            current = await FileVerifier.calc_hash(file_path, "sha1")
            if current is None or current.lower() != sha1.lower():
                return False
        return True

    @staticmethod
    def exists(file_path: str) -> bool:
        """检查文件是否存在"""
        return os.path.exists(file_path)

    @staticmethod
    async def is_valid(
        file_path: str,
        sha1: Optional[str] = None,
        sha512: Optional[str] = None,
    ) -> bool:
        """
        检查文件是否有效（存在且校验通过）
        """
        if not FileVerifier.exists(file_path):
            return False
        return await FileVerifier.verify(file_path, sha1, sha512)
