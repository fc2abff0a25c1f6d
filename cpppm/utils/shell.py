"""Shell 命令执行工具 - 统一子进程调用

通过 CommandExecutor 协议抽象子进程执行：git 克隆、CMake 构建、
自定义构建脚本都经由它运行，测试时注入记录型实现即可，无需 patch subprocess。
"""

from __future__ import annotations

import logging
import shlex
import subprocess
import threading
import time
from dataclasses import dataclass
from typing import Protocol

logger = logging.getLogger(__name__)

# 取消时 SIGTERM 之后等待进程退出的秒数，超时则 SIGKILL
TERMINATE_GRACE = 5.0
_POLL_INTERVAL = 0.2


# =========================================================================
# 命令执行结果
# =========================================================================

@dataclass
class CommandResult:
    """命令执行结果（与 subprocess 解耦）"""

    returncode: int
    stdout: str
    stderr: str
    cancelled: bool = False
    timed_out: bool = False

    @property
    def success(self) -> bool:
        return self.returncode == 0 and not (self.cancelled or self.timed_out)


# =========================================================================
# 命令执行器协议
# =========================================================================

class CommandExecutor(Protocol):
    """命令执行器协议

    cancel 被置位时，实现应尽快终止正在运行的进程并返回 cancelled=True 的结果。
    """

    def execute(
        self,
        cmd: str | list[str],
        *,
        cwd: str = ".",
        env: dict[str, str] | None = None,
        timeout: float | None = None,
        cancel: threading.Event | None = None,
    ) -> CommandResult:
        """执行命令并返回结果"""
        ...


# =========================================================================
# 默认实现: 本地执行器
# =========================================================================

class LocalExecutor:
    """本地子进程执行器（默认实现）

    以轮询方式等待进程结束，以便响应取消信号和超时；
    退出路径上（包括 KeyboardInterrupt）保证子进程不会残留。
    """

    def execute(
        self,
        cmd: str | list[str],
        *,
        cwd: str = ".",
        env: dict[str, str] | None = None,
        timeout: float | None = None,
        cancel: threading.Event | None = None,
    ) -> CommandResult:
        args = shlex.split(cmd) if isinstance(cmd, str) else list(cmd)
        logger.debug("执行: %s (cwd=%s)", shlex.join(args), cwd)
        proc = subprocess.Popen(
            args, stdout=subprocess.PIPE, stderr=subprocess.PIPE,
            text=True, cwd=cwd, env=env,
        )
        deadline = time.monotonic() + timeout if timeout else None
        cancelled = timed_out = False
        try:
            while True:
                try:
                    stdout, stderr = proc.communicate(timeout=_POLL_INTERVAL)
                    break
                except subprocess.TimeoutExpired:
                    pass
                if cancel is not None and cancel.is_set():
                    cancelled = True
                elif deadline is not None and time.monotonic() >= deadline:
                    timed_out = True
                if cancelled or timed_out:
                    logger.warning("终止子进程 pid=%d: %s", proc.pid, args[0])
                    stdout, stderr = _terminate(proc)
                    break
        finally:
            if proc.poll() is None:
                _terminate(proc)
        return CommandResult(
            returncode=proc.returncode,
            stdout=stdout or "",
            stderr=stderr or "",
            cancelled=cancelled,
            timed_out=timed_out,
        )


def _terminate(proc: subprocess.Popen[str]) -> tuple[str, str]:
    """先 SIGTERM，宽限期后仍未退出则 SIGKILL"""
    proc.terminate()
    try:
        return proc.communicate(timeout=TERMINATE_GRACE)
    except subprocess.TimeoutExpired:
        proc.kill()
        return proc.communicate()


# =========================================================================
# 全局默认执行器（可替换）
# =========================================================================

_default_executor: CommandExecutor = LocalExecutor()


def get_executor() -> CommandExecutor:
    """获取全局默认命令执行器"""
    return _default_executor


def set_executor(executor: CommandExecutor) -> None:
    """替换全局默认命令执行器（用于测试或远程执行场景）"""
    global _default_executor  # noqa: PLW0603
    _default_executor = executor
