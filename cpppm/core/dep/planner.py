"""构建顺序规划

解析器的输出是遍历顺序，依赖可能排在依赖方之后。
这里用 graphlib.TopologicalSorter 计算依赖优先的构建顺序，
同一批就绪的包按解析顺序排列，保证结果稳定。
"""

from __future__ import annotations

import logging
from graphlib import CycleError, TopologicalSorter

from cpppm.core.dep.models import PackageDescriptor
from cpppm.core.exceptions import DependencyCycleError

logger = logging.getLogger(__name__)


def build_order(packages: list[PackageDescriptor]) -> list[PackageDescriptor]:
    """返回依赖优先的构建顺序

    不在 packages 中的依赖名被忽略（调用方负责传入完整的解析结果）。

    Raises:
        DependencyCycleError: 依赖图存在环
    """
    by_name = {p.name: p for p in packages}
    rank = {name: i for i, name in enumerate(by_name)}

    sorter: TopologicalSorter[str] = TopologicalSorter()
    for pkg in by_name.values():
        sorter.add(pkg.name, *(d for d in pkg.dependencies if d in by_name))

    try:
        sorter.prepare()
    except CycleError as e:
        cycle = list(e.args[1]) if len(e.args) > 1 else []
        logger.error("依赖存在循环: %s", " -> ".join(cycle))
        raise DependencyCycleError(cycle) from e

    ordered: list[PackageDescriptor] = []
    while sorter.is_active():
        ready = sorted(sorter.get_ready(), key=rank.__getitem__)
        for name in ready:
            ordered.append(by_name[name])
            sorter.done(name)
    return ordered
