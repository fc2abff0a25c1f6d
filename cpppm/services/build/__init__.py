"""构建服务模块

- backend.py: CMake 构建后端适配器
- dispatcher.py: 按构建方式分发构建
"""

from cpppm.services.build.backend import CMakeBackend
from cpppm.services.build.dispatcher import BuildDispatcher

__all__ = ["CMakeBackend", "BuildDispatcher"]
