import json
import os
import platform
import tempfile
from pathlib import Path
from typing import Any, Optional

import aiofiles
import toml
import yaml

from modsync.exceptions import ConfigParseError


def get_app_data() -> Path:
    """各系统存放启动器数据的基础目录"""
    system = platform.system()
    if system == "Windows":
        return Path(os.environ.get("APPDATA", Path.home() / "AppData" / "Roaming"))
    if system == "Darwin":
        return Path.home() / "Library" / "Application Support"
    return Path(os.environ.get("XDG_DATA_HOME", Path.home() / ".local" / "share"))


def get_minecraft_folder() -> Path:
    """原版启动器的默认游戏目录"""
    system = platform.system()
    if system == "Darwin":
        return get_app_data() / "minecraft"
    if system == "Windows":
        return get_app_data() / ".minecraft"
    return Path.home() / ".minecraft"


def load_settings_file(path: Optional[str]) -> dict:
    """按后缀加载 TOML / JSON / YAML 设置文件，文件不存在时返回空字典"""
    if not path:
        return {}
    file = Path(path)
    if not file.exists():
        return {}

    suffix = file.suffix.lower()
    try:
        if suffix == ".toml":
            return toml.load(str(file))
        elif suffix == ".json":
            return json.loads(file.read_text(encoding="utf-8"))
        elif suffix in (".yaml", ".yml"):
            return yaml.safe_load(file.read_text(encoding="utf-8")) or {}
    except (toml.TomlDecodeError, yaml.YAMLError, ValueError) as e:
        raise ConfigParseError(f"设置文件解析失败: {e}", context={"path": path})
    raise ConfigParseError(f"不支持的设置文件格式: {suffix}", context={"path": path})


def write_json_atomic(path: Path, data: Any, indent: Optional[int] = 2) -> None:
    """写入临时文件后原子替换，失败时原文件保持可读"""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=indent)
        os.replace(tmp, path)
    except BaseException:
        if os.path.exists(tmp):
            os.remove(tmp)
        raise


async def write_bytes_atomic(path: Path, content: bytes) -> None:
    """异步版本的原子写入"""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(f".{path.name}.tmp")
    try:
        async with aiofiles.open(tmp, "wb") as f:
            await f.write(content)
        os.replace(tmp, path)
    except BaseException:
        if tmp.exists():
            tmp.unlink()
        raise
