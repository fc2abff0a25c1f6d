"""包管理器 - 协调 解析 → 拉取 → 构建 三阶段流水线

  resolve(name)        单线程遍历依赖图
  build_order()        依赖优先排序（有环则在拉取前失败）
  fetch_all(...)       有界线程池并发拉取，汇合屏障
  build(...)           逐个顺序构建，成功一个提交一个

拉取并行、构建串行：构建后端和自定义脚本不保证可重入，
构建阶段一次只运行一个包。

已安装注册表和缓存目录由 PackageManager 实例独占，
其他组件只在单次操作中拿到所需的路径。
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from types import MappingProxyType
from typing import TYPE_CHECKING, Callable, Mapping

from cpppm.core.dep.cache import CacheLayout
from cpppm.core.dep.fetcher import SourceFetcher
from cpppm.core.dep.models import PackageDescriptor
from cpppm.core.dep.planner import build_order
from cpppm.core.dep.resolver import DependencyResolver
from cpppm.core.exceptions import BuildFailed, InstallCancelled
from cpppm.core.models import InstallReport
from cpppm.core.protocols import RegistryClient
from cpppm.services.build.dispatcher import BuildDispatcher

if TYPE_CHECKING:
    from cpppm.core.config import Config

logger = logging.getLogger(__name__)

# 进度回调: (阶段, 描述)，CLI 用它输出状态行
ProgressCallback = Callable[[str, str], None]


def _no_progress(stage: str, message: str) -> None:
    return None


class PackageManager:
    """原生库包管理器"""

    def __init__(
        self,
        cache_dir: str | Path,
        registry: RegistryClient,
        dispatcher: BuildDispatcher,
        *,
        fetcher: SourceFetcher | None = None,
        cancel: threading.Event | None = None,
        progress: ProgressCallback | None = None,
    ) -> None:
        self.cache_dir = Path(cache_dir).expanduser()
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        self.resolver = DependencyResolver(registry)
        self.fetcher = fetcher or SourceFetcher()
        self.dispatcher = dispatcher
        self.cancel = cancel or threading.Event()
        self.progress = progress or _no_progress
        self._layout = CacheLayout(self.cache_dir)
        self._installed: dict[str, PackageDescriptor] = {}

    @classmethod
    def from_config(
        cls,
        cfg: Config,
        *,
        registry: RegistryClient | None = None,
        progress: ProgressCallback | None = None,
    ) -> PackageManager:
        """按配置装配全部组件"""
        from cpppm.services.container import ServiceContainer
        return ServiceContainer(cfg, registry=registry, progress=progress).manager

    # ---- 状态查询 ----

    @property
    def installed(self) -> Mapping[str, PackageDescriptor]:
        """已安装注册表的只读视图（包名 → 最近一次成功构建的描述）"""
        return MappingProxyType(self._installed)

    def is_installed(self, pkg: PackageDescriptor) -> bool:
        current = self._installed.get(pkg.name)
        return current is not None and current.version == pkg.version

    def cached_versions(self, name: str) -> list[str]:
        return self._layout.list_versions(name)

    def cached_packages(self) -> list[str]:
        return self._layout.list_packages()

    # ---- 流水线 ----

    def resolve(self, name: str) -> list[PackageDescriptor]:
        """解析 name 的传递依赖并按依赖优先排序"""
        return build_order(self.resolver.resolve(name))

    def install(self, name: str, *, force: bool = False) -> InstallReport:
        """安装 name 及其全部依赖

        已安装同版本的包直接跳过（force=True 时重新构建），
        因此中途失败后重试只会处理尚未提交的包。

        Raises:
            DependencyResolutionError: 注册表查询失败或依赖存在环
            FetchError / InstallCancelled: 拉取阶段失败，已安装注册表不变
            BuildFailed: 某个包构建失败；此前已提交的包保留在注册表中
        """
        report = InstallReport(root=name)
        self.progress("resolve", f"解析依赖: {name}")
        report.resolved = self.resolver.resolve(name)
        ordered = build_order(report.resolved)
        report.order = [p.name for p in ordered]

        pending = []
        for pkg in ordered:
            if not force and self.is_installed(pkg):
                report.skipped.append(pkg.name)
                self.progress("skip", f"已安装: {pkg}")
            else:
                pending.append(pkg)
        if not pending:
            logger.info("%s 及其依赖均已安装", name)
            return report

        self._check_cancel()
        fetched = self.fetcher.fetch_all(pending, self._layout, self.cancel)
        for f in fetched:
            self.progress("fetch", f"{'缓存' if f.cached else '已下载'}: {f.descriptor}")

        for package in fetched:
            self._check_cancel()
            self.progress("build", f"构建: {package.descriptor}")
            result = self.dispatcher.build(package, self._layout)
            if not result.installed:
                self._log_partial(report, package.name)
                raise BuildFailed(package.name, result.message)
            self._installed[package.name] = package.descriptor
            report.installed.append(result)
            self.progress("installed", f"已安装: {package.descriptor}")

        logger.info(
            "安装完成: %s (新安装 %d, 跳过 %d)",
            name, len(report.installed), len(report.skipped),
        )
        return report

    def _check_cancel(self) -> None:
        if self.cancel.is_set():
            raise InstallCancelled("安装已取消")

    @staticmethod
    def _log_partial(report: InstallReport, failed: str) -> None:
        if report.installed_names:
            logger.warning(
                "%s 构建失败，以下包已提交且保留: %s（重试时将跳过）",
                failed, ", ".join(report.installed_names),
            )
