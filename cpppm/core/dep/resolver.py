"""依赖解析器

从根包名出发，按需查询注册表展开完整的传递依赖集合。
依赖图不在内存中显式构建：节点以包名标识，边在弹出节点时经注册表查询得到。

行为约定:
  - 每个包名最多查询一次（菱形依赖去重）
  - 循环依赖不会死循环，每个参与者只解析一次，且不报错
  - 输出顺序为工作栈的遍历顺序，不保证依赖在前；
    需要依赖优先的顺序时使用 planner.build_order()
  - 任意一次注册表失败立即终止，不返回部分结果
"""

from __future__ import annotations

import logging

from cpppm.core.dep.models import PackageDescriptor, validate_package_name
from cpppm.core.exceptions import DependencyResolutionError, RegistryError
from cpppm.core.protocols import RegistryClient

logger = logging.getLogger(__name__)


class DependencyResolver:
    """工作栈 + 已访问集合的依赖展开"""

    def __init__(self, registry: RegistryClient) -> None:
        self.registry = registry

    def resolve(self, root: str) -> list[PackageDescriptor]:
        """展开 root 的全部传递依赖，返回去重后的包描述列表（含 root）

        Raises:
            ValidationError: root 包名非法
            DependencyResolutionError: 注册表查询失败，__cause__ 为原始错误
        """
        validate_package_name(root)

        to_process = [root]
        visited: set[str] = set()
        resolved: list[PackageDescriptor] = []

        while to_process:
            name = to_process.pop()
            if name in visited:
                continue

            try:
                package = self.registry.fetch(name)
            except RegistryError as e:
                logger.error("解析 %s 失败: %s", name, e)
                raise DependencyResolutionError(
                    name, f"依赖解析失败: {name} - {e}",
                ) from e

            for dep in package.dependencies:
                if dep not in visited:
                    to_process.append(dep)

            visited.add(name)
            resolved.append(package)
            logger.debug(
                "已解析 %s (依赖: %s)", package, ", ".join(package.dependencies) or "-",
            )

        logger.info("依赖解析完成: %s -> %d 个包", root, len(resolved))
        return resolved
