"""依赖包数据模型

数据类:
- BuildKind / BuildType: 构建方式（CMake / HeaderOnly / Custom(script)）
- PackageDescriptor: 注册表返回的包描述，创建后不可变
- FetchedPackage: 已拉取到本地缓存的包（描述 + 源码目录）
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from cpppm.core.exceptions import ValidationError

# 包名同时用作缓存子目录名，不允许路径分隔符和前导点
_NAME_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._+\-]*$")


def validate_package_name(name: str) -> str:
    """校验包名，返回原值

    Raises:
        ValidationError: 包名为空或包含非法字符
    """
    if not isinstance(name, str) or not _NAME_RE.match(name):
        raise ValidationError(f"非法包名: {name!r}")
    return name


class BuildKind(str, Enum):
    """构建方式，值即注册表中的序列化名称"""

    CMAKE = "CMake"
    HEADER_ONLY = "HeaderOnly"
    CUSTOM = "Custom"


@dataclass(frozen=True)
class BuildType:
    """构建方式 + Custom 类型附带的脚本内容"""

    kind: BuildKind
    script: str = ""

    @classmethod
    def cmake(cls) -> BuildType:
        return cls(BuildKind.CMAKE)

    @classmethod
    def header_only(cls) -> BuildType:
        return cls(BuildKind.HEADER_ONLY)

    @classmethod
    def custom(cls, script: str) -> BuildType:
        return cls(BuildKind.CUSTOM, script)

    def __str__(self) -> str:
        if self.kind is BuildKind.CUSTOM:
            return f"Custom({self.script!r})"
        return self.kind.value


@dataclass(frozen=True)
class PackageDescriptor:
    """单个包的描述，name 为唯一键

    version 仅作信息展示和缓存键，不参与依赖解析。
    """

    name: str
    version: str
    dependencies: tuple[str, ...] = ()
    source_url: str = ""
    build_type: BuildType = BuildType(BuildKind.CMAKE)
    checksum_sha256: str = ""

    @property
    def key(self) -> tuple[str, str]:
        """缓存键 (name, version)"""
        return (self.name, self.version)

    def __str__(self) -> str:
        return f"{self.name}@{self.version}"


@dataclass(frozen=True)
class FetchedPackage:
    """已拉取的包"""

    descriptor: PackageDescriptor
    source_dir: Path
    cached: bool = False  # 是否命中本地缓存（未发起网络请求）

    @property
    def name(self) -> str:
        return self.descriptor.name
