"""构建与安装的结果模型"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from cpppm.core.dep.models import FetchedPackage, PackageDescriptor


class BuildState(str, Enum):
    """单个包的构建状态机: FETCHED → BUILDING → INSTALLED | FAILED"""

    FETCHED = "fetched"
    BUILDING = "building"
    INSTALLED = "installed"
    FAILED = "failed"


@dataclass
class BuildResult:
    """构建结果"""

    package: FetchedPackage
    state: BuildState = BuildState.FETCHED
    duration: float = 0.0
    message: str = ""
    output_path: str = ""

    @property
    def name(self) -> str:
        return self.package.name

    @property
    def installed(self) -> bool:
        """只有 INSTALLED 的结果才允许写入已安装注册表"""
        return self.state is BuildState.INSTALLED


@dataclass
class InstallReport:
    """一次 install 调用的汇总"""

    root: str
    resolved: list[PackageDescriptor] = field(default_factory=list)
    order: list[str] = field(default_factory=list)       # 实际构建顺序（依赖优先）
    installed: list[BuildResult] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)     # 已安装同版本，未重复构建

    @property
    def installed_names(self) -> list[str]:
        return [r.name for r in self.installed]
