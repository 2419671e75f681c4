"""
测试公共夹具

FakeClient 替代 HttpClient 并记录每一次请求，用于断言一次运行实际发起了哪些网络获取。
"""

import asyncio
import copy
import hashlib
from pathlib import Path

import pytest

from modsync.exceptions import DownloadNetworkError, MalformedManifestError
from modsync.models import LauncherChoice, Settings
from modsync.services import ConfigStore

SOURCE = "example/pack"
BRANCH = "main"
UUID = "2f1c7d64-1111-4a4b-9c9c-000000000001"


def sha1_of(data: bytes) -> str:
    return hashlib.sha1(data).hexdigest()


class FakeClient:
    def __init__(self):
        self.manifests = {}
        self.json = {}
        self.files = {}
        self.failures = {}
        self.blocked = set()
        self.requests = []
        self.download_started = asyncio.Event()
        self.closed = False

    def serve(self, url: str, data: bytes) -> str:
        self.files[url] = data
        return url

    def downloads(self):
        return [r[1] for r in self.requests if r[0] == "download"]

    def item_fetches(self):
        return [r for r in self.requests if r[0] != "manifest"]

    async def fetch_manifest(self, source, branch):
        self.requests.append(("manifest", source, branch))
        if (source, branch) not in self.manifests:
            raise MalformedManifestError("manifest not found")
        return copy.deepcopy(self.manifests[(source, branch)])

    async def get_json(self, url, params=None, cache=True):
        self.requests.append(("json", url))
        return copy.deepcopy(self.json.get(url))

    async def get_bytes(self, url):
        self.requests.append(("bytes", url))
        if url not in self.files:
            raise DownloadNetworkError(f"no such file: {url}")
        return self.files[url]

    async def download(self, url, file_path, on_chunk=None):
        self.requests.append(("download", url))
        if url in self.blocked:
            self.download_started.set()
            await asyncio.Event().wait()
        if self.failures.get(url, 0) > 0:
            self.failures[url] -= 1
            raise DownloadNetworkError(f"simulated failure for {url}")
        if url not in self.files:
            raise DownloadNetworkError(f"no such file: {url}")
        data = self.files[url]
        Path(file_path).write_bytes(data)
        if on_chunk:
            on_chunk(len(data), len(data))
        return len(data)

    async def close(self):
        self.closed = True


M1_URL = "https://cdn.example.com/files/m1-1.0.jar"
M2_URL = "https://cdn.example.com/files/m2-1.0.jar"
M1_DATA = b"m1 jar contents"
M2_DATA = b"m2 jar contents"


def make_manifest(**overrides) -> dict:
    """两个功能：A（默认开启）控制 m1，B（默认关闭）控制 m2"""
    manifest = {
        "manifest_version": "0.1.1",
        "modpack_version": "1.0.0",
        "name": "Example Pack",
        "subtitle": "for tests",
        "uuid": UUID,
        "loader": {"type": "fabric", "version": "0.15.11", "minecraft_version": "1.20.1"},
        "features": [
            {"id": "A", "name": "Feature A", "default": True},
            {"id": "B", "name": "Feature B", "default": False},
        ],
        "mods": [
            {
                "name": "m1",
                "source": "ddl",
                "location": M1_URL,
                "version": "1.0",
                "feature": "A",
                "sha1": sha1_of(M1_DATA),
            },
            {
                "name": "m2",
                "source": "ddl",
                "location": M2_URL,
                "version": "1.0",
                "feature": "B",
                "sha1": sha1_of(M2_DATA),
            },
        ],
        "shaderpacks": [],
        "resourcepacks": [],
        "include": [],
    }
    manifest.update(overrides)
    return manifest


@pytest.fixture
def settings():
    return Settings(max_concurrent=2, max_retries=1, retry_delay=0, item_timeout=5)


@pytest.fixture
def store(tmp_path):
    return ConfigStore(str(tmp_path / "config" / "config.json"))


@pytest.fixture
def mmc_root(tmp_path):
    root = tmp_path / "MultiMC"
    (root / "instances").mkdir(parents=True)
    return root


@pytest.fixture
def vanilla_root(tmp_path):
    root = tmp_path / ".minecraft"
    (root / "versions").mkdir(parents=True)
    return root


@pytest.fixture
def mmc_choice(mmc_root):
    return LauncherChoice(family="multimc", name="multimc", path=str(mmc_root))


@pytest.fixture
def game_dir(mmc_root):
    return mmc_root / "instances" / UUID / ".minecraft"


def make_client(manifest=None) -> FakeClient:
    client = FakeClient()
    client.manifests[(SOURCE, BRANCH)] = manifest or make_manifest()
    client.serve(M1_URL, M1_DATA)
    client.serve(M2_URL, M2_DATA)
    return client
