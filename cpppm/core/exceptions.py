"""统一异常体系

所有业务异常继承 CpppmError，每个异常带有 code，
CLI 层据此输出 "[CODE] message" 形式的友好提示。

层级:
  CpppmError
  ├── ConfigError
  ├── ValidationError
  ├── RegistryError
  │   ├── NetworkError          传输失败（可重试）
  │   ├── ParseError            注册表响应格式错误
  │   └── PackageNotFoundError
  ├── DependencyResolutionError 包装解析过程中的首个注册表错误
  │   └── DependencyCycleError
  ├── FetchError
  │   └── ChecksumError
  ├── BuildFailed
  └── InstallCancelled
"""

from __future__ import annotations


class CpppmError(Exception):
    """框架基础异常"""

    code: str = "UNKNOWN"

    def __init__(self, message: str) -> None:
        super().__init__(message)


class ConfigError(CpppmError):
    """配置文件缺失或内容无效"""

    code = "CONFIG_ERROR"


class ValidationError(CpppmError):
    """输入数据校验失败"""

    code = "VALIDATION_ERROR"

    def __init__(self, message: str, details: list[str] | None = None) -> None:
        super().__init__(message)
        self.details = details or []


# =========================================================================
# 注册表
# =========================================================================

class RegistryError(CpppmError):
    """注册表查询失败"""

    code = "REGISTRY_ERROR"


class NetworkError(RegistryError):
    """网络传输失败（连接、超时、HTTP 错误状态）"""

    code = "NETWORK_ERROR"

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status

    @property
    def retryable(self) -> bool:
        # 4xx 为确定性错误，重试无意义
        return self.status is None or self.status >= 500


class ParseError(RegistryError):
    """注册表返回的包描述格式错误"""

    code = "PARSE_ERROR"


class PackageNotFoundError(RegistryError):
    """注册表中不存在该包"""

    code = "PACKAGE_NOT_FOUND"

    def __init__(self, name: str) -> None:
        super().__init__(f"注册表中不存在包: {name}")
        self.name = name


# =========================================================================
# 依赖解析
# =========================================================================

class DependencyResolutionError(CpppmError):
    """依赖解析失败，__cause__ 为首个注册表错误"""

    code = "DEPENDENCY_ERROR"

    def __init__(self, package: str, message: str = "") -> None:
        super().__init__(message or f"依赖解析失败: {package}")
        self.package = package


class DependencyCycleError(DependencyResolutionError):
    """依赖图存在环，无法确定构建顺序"""

    code = "DEPENDENCY_CYCLE"

    def __init__(self, cycle: list[str]) -> None:
        super().__init__(
            cycle[0] if cycle else "",
            f"依赖存在循环: {' -> '.join(cycle)}",
        )
        self.cycle = cycle


# =========================================================================
# 拉取 / 构建
# =========================================================================

class FetchError(CpppmError):
    """源码拉取失败"""

    code = "FETCH_ERROR"

    def __init__(self, name: str, message: str) -> None:
        super().__init__(message)
        self.name = name


class ChecksumError(FetchError):
    """下载文件校验和不匹配"""

    code = "CHECKSUM_MISMATCH"


class BuildFailed(CpppmError):
    """单个包构建失败，整个安装随之终止"""

    code = "BUILD_FAILED"

    def __init__(self, name: str, reason: str = "") -> None:
        message = f"构建失败: {name}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)
        self.name = name
        self.reason = reason


class InstallCancelled(CpppmError):
    """安装被取消信号中断"""

    code = "CANCELLED"
