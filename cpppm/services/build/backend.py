"""CMake 构建后端适配器

BuildBackend 协议的默认实现: configure → build → install 三步，
经 CommandExecutor 执行，返回第一个非 0 的退出码。
编译器 / ABI 由 CMake 自行探测，这里不做任何处理。
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path

from cpppm.utils.shell import CommandExecutor, get_executor

logger = logging.getLogger(__name__)

# 进程无法启动（如 cmake 不在 PATH 中）时返回的状态码
STATUS_NOT_FOUND = 127


class CMakeBackend:
    """调用 cmake 命令行完成构建与安装"""

    def __init__(
        self,
        *,
        cmake_bin: str = "cmake",
        build_type: str = "Release",
        extra_args: list[str] | None = None,
        timeout: float | None = None,
        executor: CommandExecutor | None = None,
        cancel: threading.Event | None = None,
    ) -> None:
        self.cmake_bin = cmake_bin
        self.build_type = build_type
        self.extra_args = list(extra_args or [])
        self.timeout = timeout
        self._executor = executor
        self.cancel = cancel

    @property
    def executor(self) -> CommandExecutor:
        return self._executor or get_executor()

    def commands(self, source_dir: Path, build_dir: Path, prefix: Path) -> list[list[str]]:
        return [
            [
                self.cmake_bin, "-S", str(source_dir), "-B", str(build_dir),
                f"-DCMAKE_INSTALL_PREFIX={prefix}",
                f"-DCMAKE_BUILD_TYPE={self.build_type}",
                *self.extra_args,
            ],
            [self.cmake_bin, "--build", str(build_dir), "--parallel"],
            [self.cmake_bin, "--install", str(build_dir)],
        ]

    def build_cmake(self, name: str, source_dir: Path, prefix: Path) -> int:
        build_dir = source_dir.parent / f"build-{source_dir.name}"
        build_dir.mkdir(parents=True, exist_ok=True)
        prefix.mkdir(parents=True, exist_ok=True)

        for cmd in self.commands(source_dir, build_dir, prefix):
            step = cmd[1]
            logger.info("  cmake %s: %s", step, name, extra={"package": name})
            try:
                r = self.executor.execute(
                    cmd, cwd=str(source_dir), timeout=self.timeout, cancel=self.cancel,
                )
            except OSError as e:
                logger.error("无法执行 %s: %s", self.cmake_bin, e)
                return STATUS_NOT_FOUND
            if not r.success:
                logger.error(
                    "cmake %s 失败 %s (rc=%d): %s",
                    step, name, r.returncode, r.stderr.strip()[-500:],
                )
                return r.returncode or 1
        return 0
