"""服务容器 - 按配置装配流水线组件

依赖关系（→ 表示依赖）:
  manager    → registry, fetcher, dispatcher
  dispatcher → backend, executor
  fetcher    → executor
  backend    → executor

同一容器内的组件共享同一个取消信号和命令执行器，
CLI 置位取消信号即可同时停止拉取、构建和正在运行的子进程。

用法:
    container = ServiceContainer(config=Config.from_file("cpppm.yml"))
    container.manager.install("fmt")

    # 测试中注入假注册表 / 执行器
    container = ServiceContainer(config=cfg, registry=fake, executor=recorder)
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

from cpppm.core.protocols import BuildBackend, RegistryClient
from cpppm.utils.shell import CommandExecutor, get_executor

if TYPE_CHECKING:
    from cpppm.core.config import Config
    from cpppm.core.dep.fetcher import SourceFetcher
    from cpppm.services.build.dispatcher import BuildDispatcher
    from cpppm.services.package_manager import PackageManager, ProgressCallback

logger = logging.getLogger(__name__)


class ServiceContainer:
    """懒加载服务容器"""

    def __init__(
        self,
        config: Config | None = None,
        *,
        registry: RegistryClient | None = None,
        backend: BuildBackend | None = None,
        executor: CommandExecutor | None = None,
        progress: ProgressCallback | None = None,
        cancel: threading.Event | None = None,
    ) -> None:
        if config is None:
            from cpppm.core.config import get_config
            config = get_config()
        self._config = config
        self._instances: dict[str, object] = {}
        if registry is not None:
            self._instances["registry"] = registry
        if backend is not None:
            self._instances["backend"] = backend
        self._executor = executor
        self.progress = progress
        self.cancel = cancel or threading.Event()

    @property
    def config(self) -> Config:
        return self._config

    @property
    def executor(self) -> CommandExecutor:
        return self._executor or get_executor()

    @property
    def registry(self) -> RegistryClient:
        if "registry" not in self._instances:
            from cpppm.core.dep.registry import make_registry
            self._instances["registry"] = make_registry(
                self._config.registry_url,
                timeout=self._config.request_timeout,
                retries=self._config.retries,
                backoff=self._config.retry_backoff,
            )
        return self._instances["registry"]  # type: ignore[return-value]

    @property
    def backend(self) -> BuildBackend:
        if "backend" not in self._instances:
            from cpppm.services.build.backend import CMakeBackend
            self._instances["backend"] = CMakeBackend(
                cmake_bin=self._config.cmake_bin,
                build_type=self._config.cmake_build_type,
                extra_args=self._config.cmake_args,
                timeout=self._config.build_timeout,
                executor=self.executor,
                cancel=self.cancel,
            )
        return self._instances["backend"]  # type: ignore[return-value]

    @property
    def fetcher(self) -> SourceFetcher:
        if "fetcher" not in self._instances:
            from cpppm.core.dep.fetcher import SourceFetcher
            self._instances["fetcher"] = SourceFetcher(
                max_workers=self._config.max_workers,
                timeout=self._config.request_timeout,
                retries=self._config.retries,
                backoff=self._config.retry_backoff,
                git_bin=self._config.git_bin,
                executor=self.executor,
            )
        return self._instances["fetcher"]  # type: ignore[return-value]

    @property
    def dispatcher(self) -> BuildDispatcher:
        if "dispatcher" not in self._instances:
            from cpppm.services.build.dispatcher import BuildDispatcher
            self._instances["dispatcher"] = BuildDispatcher(
                self.backend,
                shell=self._config.shell,
                timeout=self._config.build_timeout,
                executor=self.executor,
                cancel=self.cancel,
            )
        return self._instances["dispatcher"]  # type: ignore[return-value]

    @property
    def manager(self) -> PackageManager:
        if "manager" not in self._instances:
            from cpppm.services.package_manager import PackageManager
            self._instances["manager"] = PackageManager(
                self._config.cache_path,
                self.registry,
                self.dispatcher,
                fetcher=self.fetcher,
                cancel=self.cancel,
                progress=self.progress,
            )
            logger.debug("PackageManager 已装配: cache=%s", self._config.cache_path)
        return self._instances["manager"]  # type: ignore[return-value]
