"""测试共享 fixture - 假注册表 / 假构建后端 / 记录型执行器 / 本地归档

整体思路:

  FakeRegistry        依赖图以 {name: [deps]} 描述，记录每次 fetch 调用
  FakeBackend         返回预设状态码，记录 build_cmake 调用
  RecordingExecutor   记录命令，不启动真实进程（git clone 时按需创建目录）
  FakeDownloader      把本地 tar.gz 拷贝到目标路径，统计下载次数

单元测试和 CLI 测试都只做本地 IO，无需网络和 cmake。
"""

from __future__ import annotations

import io
import shutil
import tarfile
import threading
from pathlib import Path
from typing import Any

import pytest

from cpppm.core.dep.models import BuildType, PackageDescriptor
from cpppm.core.exceptions import NetworkError, PackageNotFoundError
from cpppm.utils.net import sha256_file
from cpppm.utils.shell import CommandResult

ARCHIVE_BASE = "https://example.com/src"


def make_pkg(
    name: str,
    deps: list[str] | None = None,
    *,
    version: str = "1.0.0",
    build_type: BuildType | None = None,
    source_url: str = "",
    checksum: str = "",
) -> PackageDescriptor:
    return PackageDescriptor(
        name=name,
        version=version,
        dependencies=tuple(deps or []),
        source_url=source_url or f"{ARCHIVE_BASE}/{name}-{version}.tar.gz",
        build_type=build_type or BuildType.cmake(),
        checksum_sha256=checksum,
    )


def make_tarball(path: Path, files: dict[str, str], top: str = "") -> Path:
    """生成 tar.gz，top 非空时所有文件放在该顶层目录下"""
    path.parent.mkdir(parents=True, exist_ok=True)
    with tarfile.open(path, "w:gz") as tf:
        for rel, content in files.items():
            data = content.encode("utf-8")
            info = tarfile.TarInfo(f"{top}/{rel}" if top else rel)
            info.size = len(data)
            tf.addfile(info, io.BytesIO(data))
    return path


class FakeRegistry:
    """以依赖图驱动的注册表，线程安全地记录调用"""

    def __init__(
        self,
        graph: dict[str, list[str]] | None = None,
        packages: list[PackageDescriptor] | None = None,
        fail: dict[str, Exception] | None = None,
    ) -> None:
        self.packages = {p.name: p for p in packages or []}
        for name, deps in (graph or {}).items():
            self.packages[name] = make_pkg(name, deps)
        self.fail = fail or {}
        self.calls: list[str] = []
        self._lock = threading.Lock()

    def fetch(self, name: str) -> PackageDescriptor:
        with self._lock:
            self.calls.append(name)
        if name in self.fail:
            raise self.fail[name]
        if name not in self.packages:
            raise PackageNotFoundError(name)
        return self.packages[name]


class FakeBackend:
    def __init__(self, status: int | dict[str, int] = 0) -> None:
        self.status = status
        self.calls: list[tuple[str, Path, Path]] = []

    def build_cmake(self, name: str, source_dir: Path, prefix: Path) -> int:
        self.calls.append((name, source_dir, prefix))
        if isinstance(self.status, dict):
            return self.status.get(name, 0)
        return self.status


class RecordingExecutor:
    """记录所有命令；git clone 时创建目标目录模拟克隆成功"""

    def __init__(self, returncode: int = 0, stderr: str = "") -> None:
        self.returncode = returncode
        self.stderr = stderr
        self.calls: list[dict[str, Any]] = []

    def execute(self, cmd, *, cwd=".", env=None, timeout=None, cancel=None) -> CommandResult:
        self.calls.append({"cmd": list(cmd), "cwd": cwd, "env": env, "timeout": timeout})
        if self.returncode == 0 and len(cmd) > 1 and cmd[1] == "clone":
            dest = Path(cmd[-1])
            dest.mkdir(parents=True, exist_ok=True)
            (dest / "CMakeLists.txt").write_text("project(x)\n")
        return CommandResult(returncode=self.returncode, stdout="", stderr=self.stderr)

    @property
    def commands(self) -> list[list[str]]:
        return [c["cmd"] for c in self.calls]


class FakeDownloader:
    """URL → 本地文件 的映射下载器"""

    def __init__(self, files: dict[str, Path] | None = None) -> None:
        self.files = dict(files or {})
        self.calls: list[str] = []
        self.fail: dict[str, Exception] = {}
        self._lock = threading.Lock()

    def add(self, url: str, path: Path) -> str:
        self.files[url] = path
        return sha256_file(path)

    def __call__(self, url: str, dest: Path, *, timeout: float = 30.0) -> Path:
        with self._lock:
            self.calls.append(url)
        if url in self.fail:
            raise self.fail[url]
        if url not in self.files:
            raise NetworkError(f"下载失败: {url} - HTTP 404", status=404)
        dest.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(self.files[url], dest)
        return dest


@pytest.fixture()
def downloader() -> FakeDownloader:
    return FakeDownloader()


@pytest.fixture()
def executor() -> RecordingExecutor:
    return RecordingExecutor()


@pytest.fixture()
def archive_for(tmp_path: Path, downloader: FakeDownloader):
    """为包生成源码归档并登记到 downloader，返回 (descriptor, sha256)

    用法:
        pkg, sha = archive_for(make_pkg("fmt"), {"include/fmt/core.h": "..."})
    """
    def _make(
        pkg: PackageDescriptor, files: dict[str, str] | None = None,
    ) -> tuple[PackageDescriptor, str]:
        archive = make_tarball(
            tmp_path / "archives" / f"{pkg.name}-{pkg.version}.tar.gz",
            files or {"CMakeLists.txt": f"project({pkg.name})\n"},
            top=f"{pkg.name}-{pkg.version}",
        )
        return pkg, downloader.add(pkg.source_url, archive)

    return _make
