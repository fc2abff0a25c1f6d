"""注册表客户端

职责:
- 将注册表的包描述（JSON / YAML 字典）解析为 PackageDescriptor
- HttpRegistryClient: 远程注册表 GET {registry_url}/packages/{name}
- ManifestRegistry: 本地 YAML 清单（离线 / 内网镜像场景）

两种实现都是无状态的纯查询，可被拉取线程并发调用。
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Callable
from urllib.parse import quote

import yaml

from cpppm.core.dep.models import (
    BuildKind,
    BuildType,
    PackageDescriptor,
    validate_package_name,
)
from cpppm.core.exceptions import (
    NetworkError,
    PackageNotFoundError,
    ParseError,
    ValidationError,
)
from cpppm.utils.net import http_get, with_retries
from cpppm.utils.yaml_io import load_yaml

logger = logging.getLogger(__name__)

_REQUIRED_FIELDS = ("name", "version", "source_url", "build_type")


# =========================================================================
# 包描述解析
# =========================================================================

def parse_build_type(raw: Any) -> BuildType:
    """解析构建方式

    支持的形式:
        "CMake" | "HeaderOnly"
        {"Custom": "./build.sh"}
        {"type": "Custom", "script": "./build.sh"}
    """
    if isinstance(raw, str):
        if raw == BuildKind.CUSTOM.value:
            raise ParseError("Custom 构建方式缺少 script")
        try:
            return BuildType(BuildKind(raw))
        except ValueError:
            raise ParseError(f"未知的构建方式: {raw!r}") from None

    if isinstance(raw, dict):
        if set(raw) == {BuildKind.CUSTOM.value}:
            script = raw[BuildKind.CUSTOM.value]
        elif raw.get("type") == BuildKind.CUSTOM.value:
            script = raw.get("script")
        elif "type" in raw and set(raw) == {"type"}:
            return parse_build_type(raw["type"])
        else:
            raise ParseError(f"无法识别的构建方式: {raw!r}")
        if not isinstance(script, str) or not script.strip():
            raise ParseError("Custom 构建方式的 script 必须为非空字符串")
        return BuildType.custom(script)

    raise ParseError(f"构建方式类型错误: {type(raw).__name__}")


def parse_descriptor(data: Any, expected_name: str = "") -> PackageDescriptor:
    """将注册表返回的字典解析为 PackageDescriptor

    Raises:
        ParseError: 字段缺失、类型错误，或返回的 name 与请求不一致
    """
    if not isinstance(data, dict):
        raise ParseError(f"包描述必须是对象，实际: {type(data).__name__}")

    missing = [k for k in _REQUIRED_FIELDS if k not in data]
    if missing:
        raise ParseError(f"包描述缺少字段: {', '.join(missing)}")

    name = data["name"]
    try:
        validate_package_name(name)
    except ValidationError as e:
        raise ParseError(str(e)) from e
    if expected_name and name != expected_name:
        raise ParseError(f"注册表返回的包名不一致: 请求 {expected_name}, 返回 {name}")

    version = data["version"]
    if isinstance(version, bool) or not isinstance(version, (str, int, float)):
        raise ParseError(f"{name}: version 类型错误")

    deps = data.get("dependencies") or []
    if not isinstance(deps, list):
        raise ParseError(f"{name}: dependencies 必须是列表")
    for dep in deps:
        try:
            validate_package_name(dep)
        except ValidationError as e:
            raise ParseError(f"{name}: {e}") from e

    source_url = data["source_url"]
    if not isinstance(source_url, str) or not source_url:
        raise ParseError(f"{name}: source_url 必须为非空字符串")

    checksum = data.get("checksum_sha256") or data.get("sha256") or ""
    if not isinstance(checksum, str):
        raise ParseError(f"{name}: checksum_sha256 必须为字符串")

    return PackageDescriptor(
        name=name,
        version=str(version),
        dependencies=tuple(deps),
        source_url=source_url,
        build_type=parse_build_type(data["build_type"]),
        checksum_sha256=checksum.lower(),
    )


# =========================================================================
# 远程注册表
# =========================================================================

class HttpRegistryClient:
    """HTTP JSON 注册表客户端"""

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 30.0,
        retries: int = 0,
        backoff: float = 0.5,
        getter: Callable[..., bytes] = http_get,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.retries = retries
        self.backoff = backoff
        self._get = getter

    def package_url(self, name: str) -> str:
        return f"{self.base_url}/packages/{quote(name, safe='')}"

    def fetch(self, name: str) -> PackageDescriptor:
        url = self.package_url(name)
        logger.debug("查询注册表: %s", url)
        try:
            body = with_retries(
                lambda: self._get(url, timeout=self.timeout),
                retries=self.retries, backoff=self.backoff,
                label=f"注册表查询 {name}",
            )
        except NetworkError as e:
            if e.status == 404:
                raise PackageNotFoundError(name) from e
            raise
        except ValidationError as e:
            raise NetworkError(f"注册表地址无效: {e}") from e

        try:
            data = json.loads(body)
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise ParseError(f"{name}: 注册表响应不是合法 JSON - {e}") from e
        return parse_descriptor(data, expected_name=name)


# =========================================================================
# 本地清单
# =========================================================================

class ManifestRegistry:
    """本地 YAML 清单注册表

    清单格式:
        packages:
          fmt:
            version: "10.2.1"
            dependencies: []
            source_url: https://example.com/fmt-10.2.1.tar.gz
            build_type: CMake
            checksum_sha256: ...

    条目中的 name 可省略，默认取键名。清单在构造时一次性加载。
    """

    def __init__(self, manifest_path: str | Path) -> None:
        self.manifest_path = Path(manifest_path)
        if not self.manifest_path.exists():
            logger.warning("清单文件不存在: %s", self.manifest_path)
        try:
            data = load_yaml(self.manifest_path)
        except (yaml.YAMLError, ValueError) as e:
            raise ParseError(f"清单文件无法解析 {self.manifest_path}: {e}") from e
        entries = data.get("packages") or {}
        if not isinstance(entries, dict):
            raise ParseError(f"清单文件 {self.manifest_path}: packages 必须是字典")
        self._entries: dict[str, Any] = entries
        logger.info("已加载 %d 个包定义: %s", len(self._entries), self.manifest_path)

    def fetch(self, name: str) -> PackageDescriptor:
        entry = self._entries.get(name)
        if entry is None:
            raise PackageNotFoundError(name)
        if not isinstance(entry, dict):
            raise ParseError(f"{name}: 清单条目必须是字典")
        return parse_descriptor({"name": name, **entry}, expected_name=name)

    def names(self) -> list[str]:
        return sorted(self._entries)


def make_registry(location: str, **http_options: Any) -> HttpRegistryClient | ManifestRegistry:
    """根据地址选择实现: http(s) URL 走远程注册表，其余视为本地清单路径"""
    if location.startswith(("http://", "https://")):
        return HttpRegistryClient(location, **http_options)
    return ManifestRegistry(location)
