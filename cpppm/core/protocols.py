"""领域协议定义

流水线核心只依赖这里的抽象：注册表查询和原生构建后端。
使用 typing.Protocol，测试中的简单假实现无需继承即可满足协议。
"""

from __future__ import annotations

from pathlib import Path
from typing import Protocol

from cpppm.core.dep.models import PackageDescriptor


class RegistryClient(Protocol):
    """注册表客户端协议

    纯查询、无副作用，允许多个调用方并发调用。
    """

    def fetch(self, name: str) -> PackageDescriptor:
        """按名称获取包描述

        Raises:
            NetworkError: 传输失败
            ParseError: 响应格式错误
            PackageNotFoundError: 包不存在
        """
        ...


class BuildBackend(Protocol):
    """原生构建后端协议 - 核心对工具链的唯一依赖

    返回状态码，0 为成功，非 0 为失败。工具链探测、ABI 处理等
    细节全部属于后端实现，核心视其为黑盒。
    """

    def build_cmake(self, name: str, source_dir: Path, prefix: Path) -> int:
        ...
