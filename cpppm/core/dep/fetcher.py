"""源码拉取器

职责:
- 并发拉取一批包的源码（有界线程池 + 汇合屏障，任一失败即整体失败）
- 缓存优先: 以 (name, version) 为键，戳文件有效且校验和一致时不发起网络请求
- 归档下载 + sha256 校验 + 安全解包
- git 仓库浅克隆
"""

from __future__ import annotations

import logging
import shutil
import tarfile
import threading
import zipfile
from concurrent.futures import FIRST_EXCEPTION, ThreadPoolExecutor, wait
from pathlib import Path, PurePosixPath
from typing import Any, Callable
from urllib.parse import urlparse

import yaml

from cpppm.core.dep.cache import CacheLayout
from cpppm.core.dep.models import FetchedPackage, PackageDescriptor
from cpppm.core.exceptions import (
    ChecksumError,
    CpppmError,
    FetchError,
    InstallCancelled,
    NetworkError,
    ValidationError,
)
from cpppm.utils.net import download_file, sha256_file, with_retries
from cpppm.utils.shell import CommandExecutor, get_executor
from cpppm.utils.yaml_io import load_yaml, save_yaml

logger = logging.getLogger(__name__)

ARCHIVE_SUFFIXES = (
    ".tar.gz", ".tgz", ".tar.bz2", ".tbz2", ".tar.xz", ".txz", ".tar", ".zip",
)

Downloader = Callable[..., Any]


def is_archive_url(url: str) -> bool:
    return urlparse(url).path.lower().endswith(ARCHIVE_SUFFIXES)


class SourceFetcher:
    """包源码拉取器 - 缓存优先 + 远程下载"""

    def __init__(
        self,
        *,
        max_workers: int = 8,
        timeout: float = 30.0,
        retries: int = 0,
        backoff: float = 0.5,
        git_bin: str = "git",
        executor: CommandExecutor | None = None,
        downloader: Downloader | None = None,
    ) -> None:
        self.max_workers = max(1, max_workers)
        self.timeout = timeout
        self.retries = retries
        self.backoff = backoff
        self.git_bin = git_bin
        self._executor = executor
        self._download = downloader or download_file

    @property
    def executor(self) -> CommandExecutor:
        return self._executor or get_executor()

    # ---- 批量 ----

    def fetch_all(
        self,
        packages: list[PackageDescriptor],
        layout: CacheLayout,
        cancel: threading.Event | None = None,
    ) -> list[FetchedPackage]:
        """并发拉取全部包，返回顺序与输入一致

        任一包失败时取消尚未开始的任务，等待已在运行的任务结束后
        抛出该错误（按输入顺序取第一个失败的包）。
        """
        if not packages:
            return []

        workers = min(self.max_workers, len(packages))
        logger.info("开始拉取 %d 个包 (并发 %d)", len(packages), workers)
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="cpppm-fetch") as pool:
            futures = [pool.submit(self.fetch, p, layout, cancel) for p in packages]
            try:
                done, pending = wait(futures, return_when=FIRST_EXCEPTION)
            except BaseException:
                # 等待被中断（如 Ctrl-C）: 通知运行中的任务停止，丢弃未开始的任务
                if cancel is not None:
                    cancel.set()
                pool.shutdown(wait=True, cancel_futures=True)
                raise
            failed = [f for f in futures if f in done and f.exception() is not None]
            if failed:
                for f in pending:
                    f.cancel()
        # with 块退出即汇合屏障: 运行中的任务均已结束

        if failed:
            error = failed[0].exception()
            logger.error("拉取失败，放弃本批次: %s", error)
            assert error is not None
            raise error

        return [f.result() for f in futures]

    # ---- 单个包 ----

    def fetch(
        self,
        pkg: PackageDescriptor,
        layout: CacheLayout,
        cancel: threading.Event | None = None,
    ) -> FetchedPackage:
        """拉取单个包，命中缓存时直接返回"""
        if cancel is not None and cancel.is_set():
            raise InstallCancelled(f"已取消，未拉取 {pkg}")

        try:
            cached = self.cached_source(pkg, layout)
        except ValidationError as e:
            raise FetchError(pkg.name, str(e)) from e
        if cached is not None:
            logger.info("缓存命中: %s -> %s", pkg, cached, extra={"package": pkg.name})
            return FetchedPackage(pkg, cached, cached=True)

        version_dir = layout.version_dir(pkg)
        version_dir.mkdir(parents=True, exist_ok=True)
        # 先删旧戳文件，拉取中途失败时不会被误判为缓存有效
        layout.stamp_path(pkg).unlink(missing_ok=True)

        if is_archive_url(pkg.source_url):
            archive, sha256 = self._fetch_archive(pkg, version_dir)
            source_dir = self._unpack(pkg, archive, layout.unpack_dir(pkg))
        else:
            if pkg.checksum_sha256:
                logger.warning("%s: git 源不支持校验和，已忽略", pkg)
            archive, sha256 = None, ""
            source_dir = self._clone(pkg, layout.unpack_dir(pkg), cancel)

        save_yaml(layout.stamp_path(pkg), {
            "name": pkg.name,
            "version": pkg.version,
            "source_url": pkg.source_url,
            "archive": archive.name if archive else "",
            "sha256": sha256,
            "source_dir": source_dir.relative_to(version_dir).as_posix(),
        })
        logger.info("已拉取: %s -> %s", pkg, source_dir, extra={"package": pkg.name})
        return FetchedPackage(pkg, source_dir, cached=False)

    def cached_source(self, pkg: PackageDescriptor, layout: CacheLayout) -> Path | None:
        """缓存有效时返回源码目录，否则返回 None

        有效条件: 戳文件存在且 source_url 一致、源码目录存在；
        归档来源还要求归档重新计算的 sha256 与期望值一致
        （描述中有校验和时以描述为准，否则以戳文件记录为准）。
        """
        try:
            stamp = load_yaml(layout.stamp_path(pkg))
        except (yaml.YAMLError, ValueError) as e:
            logger.warning("%s: 戳文件损坏，重新拉取: %s", pkg, e)
            return None
        if not stamp or stamp.get("source_url") != pkg.source_url:
            return None

        version_dir = layout.version_dir(pkg)
        source_dir = version_dir / str(stamp.get("source_dir") or "src")
        if not source_dir.is_dir():
            return None

        if stamp.get("archive"):
            archive = version_dir / str(stamp["archive"])
            expected = pkg.checksum_sha256 or str(stamp.get("sha256") or "")
            if not archive.is_file() or not expected:
                return None
            if sha256_file(archive) != expected:
                logger.warning("%s: 缓存归档校验失败，重新下载", pkg)
                return None
        return source_dir

    # ---- 归档 ----

    def _fetch_archive(self, pkg: PackageDescriptor, version_dir: Path) -> tuple[Path, str]:
        filename = PurePosixPath(urlparse(pkg.source_url).path).name
        archive = version_dir / filename
        logger.info("下载: %s", pkg.source_url, extra={"package": pkg.name})
        try:
            with_retries(
                lambda: self._download(pkg.source_url, archive, timeout=self.timeout),
                retries=self.retries, backoff=self.backoff,
                label=f"下载 {pkg.name}",
            )
        except (NetworkError, ValidationError) as e:
            raise FetchError(pkg.name, f"{pkg} 下载失败: {e}") from e

        actual = sha256_file(archive)
        if pkg.checksum_sha256:
            if actual != pkg.checksum_sha256:
                archive.unlink(missing_ok=True)
                raise ChecksumError(
                    pkg.name,
                    f"校验和不匹配 {filename}: 期望 {pkg.checksum_sha256}, 实际 {actual}",
                )
            logger.info("  校验和通过: %s", filename)
        else:
            logger.warning("%s 未提供校验和，记录本次下载的 sha256: %s", pkg, actual)
        return archive, actual

    def _unpack(self, pkg: PackageDescriptor, archive: Path, dest: Path) -> Path:
        """解包到 dest，归档内只有一个顶层目录时以该目录为源码根"""
        if dest.exists():
            shutil.rmtree(dest)
        dest.mkdir(parents=True)
        try:
            if archive.name.lower().endswith(".zip"):
                _extract_zip(archive, dest)
            else:
                _extract_tar(archive, dest)
        except (tarfile.TarError, zipfile.BadZipFile, OSError, CpppmError) as e:
            shutil.rmtree(dest, ignore_errors=True)
            raise FetchError(pkg.name, f"{pkg} 解包失败: {e}") from e

        entries = [p for p in dest.iterdir() if not p.name.startswith(".")]
        if len(entries) == 1 and entries[0].is_dir():
            return entries[0]
        return dest

    # ---- git ----

    def _clone(
        self, pkg: PackageDescriptor, dest: Path, cancel: threading.Event | None,
    ) -> Path:
        """浅克隆 git 仓库；url#ref 形式指定分支或标签"""
        url, _, ref = pkg.source_url.partition("#")
        if dest.exists():
            shutil.rmtree(dest)
        cmd = [self.git_bin, "clone", "--depth", "1"]
        if ref:
            cmd += ["--branch", ref]
        cmd += ["--", url, str(dest)]

        logger.info("克隆: %s%s", url, f"@{ref}" if ref else "", extra={"package": pkg.name})
        try:
            r = self.executor.execute(
                cmd, cwd=str(dest.parent), timeout=self.timeout * 20, cancel=cancel,
            )
        except OSError as e:
            raise FetchError(pkg.name, f"{pkg} 克隆失败: {e}") from e
        if r.cancelled:
            raise InstallCancelled(f"已取消，{pkg} 克隆中断")
        if not r.success:
            shutil.rmtree(dest, ignore_errors=True)
            reason = "超时" if r.timed_out else r.stderr.strip()[:500]
            raise FetchError(pkg.name, f"{pkg} 克隆失败 (rc={r.returncode}): {reason}")
        return dest


# =========================================================================
# 安全解包
# =========================================================================

def _check_member_path(name: str, dest: Path) -> None:
    target = (dest / name).resolve()
    if not target.is_relative_to(dest.resolve()):
        raise ValidationError(f"归档成员越界: {name}")


def _extract_tar(archive: Path, dest: Path) -> None:
    with tarfile.open(archive) as tf:
        members = tf.getmembers()
        for m in members:
            _check_member_path(m.name, dest)
            if m.issym() or m.islnk():
                link_base = dest / PurePosixPath(m.name).parent if m.issym() else dest
                _check_member_path(str(link_base.relative_to(dest) / m.linkname), dest)
            elif m.isdev():
                raise ValidationError(f"归档包含设备文件: {m.name}")
        if hasattr(tarfile, "data_filter"):
            tf.extractall(dest, members=members, filter="data")
        else:
            tf.extractall(dest, members=members)  # nosec B202 - 成员已逐个校验


def _extract_zip(archive: Path, dest: Path) -> None:
    with zipfile.ZipFile(archive) as zf:
        for name in zf.namelist():
            _check_member_path(name, dest)
        zf.extractall(dest)
