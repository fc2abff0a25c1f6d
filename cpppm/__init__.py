"""cpppm - 原生库（C/C++）包管理器"""

__version__ = "0.1.0"
