"""构建分发器

按包的构建方式选择构建策略:
  - CMake:      委托构建后端，非 0 状态码即失败
  - HeaderOnly: 纯本地操作，复制头文件到缓存的 include 目录
  - Custom:     以子进程执行描述中携带的脚本

状态机: FETCHED → BUILDING → INSTALLED | FAILED。
分发器不修改任何共享状态，是否写入已安装注册表由调用方根据结果决定。
"""

from __future__ import annotations

import logging
import os
import shutil
import threading
import time
from pathlib import Path

from cpppm.core.dep.cache import CacheLayout
from cpppm.core.dep.models import BuildKind, FetchedPackage
from cpppm.core.models import BuildResult, BuildState
from cpppm.core.protocols import BuildBackend
from cpppm.utils.shell import CommandExecutor, get_executor

logger = logging.getLogger(__name__)

HEADER_SUFFIXES = frozenset((".h", ".hh", ".hpp", ".hxx", ".inl", ".ipp"))


class BuildDispatcher:
    """按构建方式分发构建"""

    def __init__(
        self,
        backend: BuildBackend,
        *,
        shell: str = "/bin/sh",
        timeout: float | None = None,
        executor: CommandExecutor | None = None,
        cancel: threading.Event | None = None,
    ) -> None:
        self.backend = backend
        self.shell = shell
        self.timeout = timeout
        self._executor = executor
        self.cancel = cancel

    @property
    def executor(self) -> CommandExecutor:
        return self._executor or get_executor()

    def build(self, package: FetchedPackage, layout: CacheLayout) -> BuildResult:
        """构建单个包，返回 INSTALLED 或 FAILED 状态的结果"""
        result = BuildResult(package=package, state=BuildState.BUILDING)
        build_type = package.descriptor.build_type
        logger.info("构建: %s [%s]", package.descriptor, build_type.kind.value,
                    extra={"package": package.name})

        start = time.monotonic()
        if build_type.kind is BuildKind.CMAKE:
            self._build_cmake(package, layout, result)
        elif build_type.kind is BuildKind.HEADER_ONLY:
            self._install_headers(package, layout, result)
        else:
            self._run_script(package, build_type.script, layout, result)
        result.duration = time.monotonic() - start

        if result.installed:
            logger.info("构建完成: %s (%.1fs)", package.descriptor, result.duration)
        else:
            logger.error("构建失败 %s: %s", package.descriptor, result.message)
        return result

    # ---- CMake ----

    def _build_cmake(
        self, package: FetchedPackage, layout: CacheLayout, result: BuildResult,
    ) -> None:
        prefix = layout.prefix_dir(package.name)
        try:
            status = self.backend.build_cmake(package.name, package.source_dir, prefix)
        except Exception as e:  # noqa: BLE001 - 后端为黑盒，任何异常都视为构建失败
            logger.exception("构建后端异常: %s", package.name)
            _fail(result, f"构建后端异常: {e}")
            return
        if status != 0:
            _fail(result, f"构建后端返回状态码 {status}")
            return
        _succeed(result, prefix)

    # ---- HeaderOnly ----

    def _install_headers(
        self, package: FetchedPackage, layout: CacheLayout, result: BuildResult,
    ) -> None:
        """复制头文件: 源码有 include/ 目录时整体复制，否则按后缀挑选并保留相对路径"""
        dest = layout.include_dir(package.name)
        src = package.source_dir
        try:
            if dest.exists():
                shutil.rmtree(dest)
            if (src / "include").is_dir():
                shutil.copytree(src / "include", dest)
                count = sum(1 for p in dest.rglob("*") if p.is_file())
            else:
                count = 0
                for header in sorted(src.rglob("*")):
                    if not header.is_file() or header.suffix.lower() not in HEADER_SUFFIXES:
                        continue
                    target = dest / header.relative_to(src)
                    target.parent.mkdir(parents=True, exist_ok=True)
                    shutil.copy2(header, target)
                    count += 1
        except OSError as e:
            _fail(result, f"头文件安装失败: {e}")
            return
        if count == 0:
            logger.warning("%s: 未找到任何头文件", package.descriptor)
        logger.info("  已安装 %d 个头文件 -> %s", count, dest)
        _succeed(result, dest)

    # ---- Custom ----

    def _run_script(
        self, package: FetchedPackage, script: str,
        layout: CacheLayout, result: BuildResult,
    ) -> None:
        prefix = layout.prefix_dir(package.name)
        desc = package.descriptor
        env = {
            **os.environ,
            "CPPPM_PACKAGE": desc.name,
            "CPPPM_VERSION": desc.version,
            "CPPPM_SOURCE_DIR": str(package.source_dir),
            "CPPPM_PREFIX": str(prefix),
        }
        try:
            prefix.mkdir(parents=True, exist_ok=True)
            r = self.executor.execute(
                [self.shell, "-c", script],
                cwd=str(package.source_dir), env=env,
                timeout=self.timeout, cancel=self.cancel,
            )
        except OSError as e:
            _fail(result, f"构建脚本无法执行: {e}")
            return
        if r.cancelled:
            _fail(result, "构建被取消")
        elif r.timed_out:
            _fail(result, f"构建脚本超时（{self.timeout}秒）")
        elif not r.success:
            _fail(result, f"构建脚本退出码: {r.returncode}\n{r.stderr.strip()[-500:]}")
        else:
            _succeed(result, prefix)


def _succeed(result: BuildResult, output: Path) -> None:
    result.state = BuildState.INSTALLED
    result.output_path = str(output)


def _fail(result: BuildResult, message: str) -> None:
    result.state = BuildState.FAILED
    result.message = message
