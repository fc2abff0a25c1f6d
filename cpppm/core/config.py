"""集中配置管理

支持从 YAML 文件加载 + 编程式覆盖；未知键保留在 extra 中。
配置文件路径默认取环境变量 CPPPM_CONFIG，其次 ~/.cpppm/config.yml。
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

from cpppm.core.exceptions import ConfigError
from cpppm.utils.yaml_io import load_yaml

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = "~/.cpppm/config.yml"


@dataclass
class Config:
    """全局配置"""

    # 目录 / 注册表
    cache_dir: str = "~/.cpppm/cache"
    registry_url: str = "https://registry.cpppm.org"

    # 拉取
    max_workers: int = 8
    request_timeout: float = 30.0
    retries: int = 2
    retry_backoff: float = 0.5

    # 构建
    build_timeout: int = 3600
    shell: str = "/bin/sh"
    git_bin: str = "git"
    cmake_bin: str = "cmake"
    cmake_build_type: str = "Release"
    cmake_args: list[str] = field(default_factory=list)

    extra: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.max_workers < 1:
            raise ConfigError(f"max_workers 必须 >= 1，当前: {self.max_workers}")
        if self.retries < 0:
            raise ConfigError(f"retries 不能为负数，当前: {self.retries}")

    @property
    def cache_path(self) -> Path:
        return Path(self.cache_dir).expanduser()

    @classmethod
    def from_file(cls, path: str | Path = "") -> Config:
        """从 YAML 文件加载配置，文件不存在则返回默认值"""
        path = Path(path or os.getenv("CPPPM_CONFIG", DEFAULT_CONFIG_FILE)).expanduser()
        try:
            data = load_yaml(path)
        except (yaml.YAMLError, ValueError) as e:
            raise ConfigError(f"无法读取配置文件 {path}: {e}") from e
        if not data:
            return cls()
        known = {f.name for f in fields(cls)} - {"extra"}
        matched = {k: v for k, v in data.items() if k in known}
        extra = {k: v for k, v in data.items() if k not in known}
        try:
            cfg = cls(**matched)
        except TypeError as e:
            raise ConfigError(f"配置文件无效 {path}: {e}") from e
        cfg.extra = extra
        return cfg


# 全局单例，由 CLI 入口显式初始化
_current: Config | None = None


def get_config() -> Config:
    """获取当前配置（未初始化则返回默认值）"""
    global _current  # noqa: PLW0603
    if _current is None:
        _current = Config()
    return _current


def init_config(path: str | Path = "") -> Config:
    """从文件初始化全局配置"""
    global _current  # noqa: PLW0603
    _current = Config.from_file(path)
    logger.debug("配置已加载: %s", path or "默认路径")
    return _current
