"""
实例安装记录

记录引擎在实例中放置的每个条目（标识、文件路径、SHA1），
用于幂等重装、更新差异和清理。
"""

import json
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

from loguru import logger

from modsync.utils import write_json_atomic


LEDGER_DIR = ".modsync"
LEDGER_FILE = "installed.json"


@dataclass
class LedgerEntry:
    """单个条目的安装记录"""

    identity: Tuple[str, ...]
    files: List[str] = field(default_factory=list)
    sha1: Optional[str] = None

    def to_dict(self) -> dict:
        return {"identity": list(self.identity), "files": self.files, "sha1": self.sha1}

    @classmethod
    def from_dict(cls, data: dict) -> "LedgerEntry":
        return cls(
            identity=tuple(data.get("identity") or ()),
            files=list(data.get("files") or []),
            sha1=data.get("sha1"),
        )


class InstallLedger:
    """实例根目录下的 .modsync/installed.json"""

    def __init__(self, game_dir: Path):
        self.game_dir = Path(game_dir)
        self.path = self.game_dir / LEDGER_DIR / LEDGER_FILE
        self.modpack_version: Optional[str] = None
        self.entries: Dict[str, LedgerEntry] = {}
        self.exists = False

    @classmethod
    def load(cls, game_dir: Path) -> "InstallLedger":
        ledger = cls(game_dir)
        if not ledger.path.exists():
            return ledger
        try:
            data = json.loads(ledger.path.read_text(encoding="utf-8"))
            ledger.modpack_version = data.get("modpack_version")
            ledger.entries = {
                k: LedgerEntry.from_dict(v) for k, v in (data.get("items") or {}).items()
            }
            ledger.exists = True
        except (OSError, ValueError, AttributeError) as e:
            # 损坏的记录等同于没有记录，所有条目会重新校验
            logger.warning(f"[记录] 安装记录损坏，忽略: {e}")
            ledger.entries = {}
        return ledger

    def resolve(self, stored: str) -> Path:
        """记录中的路径相对实例根目录，或为绝对路径"""
        path = Path(stored)
        return path if path.is_absolute() else self.game_dir / path

    def relative(self, path: Path) -> str:
        try:
            return Path(path).relative_to(self.game_dir).as_posix()
        except ValueError:
            return str(path)

    def get(self, key: str) -> Optional[LedgerEntry]:
        return self.entries.get(key)

    def record(
        self,
        key: str,
        identity: Tuple[str, ...],
        files: Iterable[Path],
        sha1: Optional[str] = None,
    ) -> None:
        self.entries[key] = LedgerEntry(
            identity=tuple(identity),
            files=[self.relative(p) for p in files],
            sha1=sha1,
        )

    def forget(self, key: str) -> Optional[LedgerEntry]:
        return self.entries.pop(key, None)

    def files_present(self, entry: LedgerEntry) -> bool:
        return all(self.resolve(f).exists() for f in entry.files)

    def remove_files(self, entry: LedgerEntry, keep: Iterable[Path] = ()) -> List[Path]:
        """删除记录中的文件（keep 中的路径除外），并清理空的父目录"""
        kept = {Path(p).resolve() for p in keep}
        removed = []
        for stored in entry.files:
            path = self.resolve(stored)
            if path.resolve() in kept or not path.exists():
                continue
            if path.is_dir():
                continue
            os.remove(path)
            removed.append(path)
            parent = path.parent
            # mods/ 等顶层目录保留
            if (
                self.game_dir not in (parent, parent.parent)
                and parent.is_dir()
                and not any(parent.iterdir())
            ):
                parent.rmdir()
        return removed

    def save(self) -> None:
        write_json_atomic(
            self.path,
            {
                "modpack_version": self.modpack_version,
                "updated": datetime.now(timezone.utc).isoformat(),
                "items": {k: v.to_dict() for k, v in sorted(self.entries.items())},
            },
        )
        self.exists = True
