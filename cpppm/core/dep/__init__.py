"""依赖包流水线模块

- models.py: 包描述数据模型
- registry.py: 注册表客户端（远程 HTTP / 本地清单）
- resolver.py: 传递依赖展开
- planner.py: 依赖优先的构建顺序
- cache.py: 缓存目录布局
- fetcher.py: 并发源码拉取
"""

from cpppm.core.dep.cache import CacheLayout
from cpppm.core.dep.fetcher import SourceFetcher
from cpppm.core.dep.models import BuildKind, BuildType, FetchedPackage, PackageDescriptor
from cpppm.core.dep.planner import build_order
from cpppm.core.dep.registry import HttpRegistryClient, ManifestRegistry, make_registry
from cpppm.core.dep.resolver import DependencyResolver

__all__ = [
    "BuildKind",
    "BuildType",
    "CacheLayout",
    "DependencyResolver",
    "FetchedPackage",
    "HttpRegistryClient",
    "ManifestRegistry",
    "PackageDescriptor",
    "SourceFetcher",
    "build_order",
    "make_registry",
]
