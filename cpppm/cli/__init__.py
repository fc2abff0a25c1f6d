"""cpppm 命令行接口

CLI 按领域拆分为子模块，每个模块注册自己的命令到 main group。
全局选项覆盖配置文件中的同名项，结果存放在 ctx.obj（Config）中。
"""

from __future__ import annotations

import os
from dataclasses import replace

import click

from cpppm import __version__
from cpppm.core.config import Config, init_config
from cpppm.core.exceptions import CpppmError
from cpppm.utils.logger import setup_logging


@click.group()
@click.version_option(version=__version__)
@click.option("--config", "config_path", default="", help="配置文件路径（默认 $CPPPM_CONFIG 或 ~/.cpppm/config.yml）")
@click.option("--registry", default=None, help="注册表地址，http(s) URL 或本地 YAML 清单路径")
@click.option("--cache-dir", default=None, help="缓存目录")
@click.option("--jobs", "-j", type=click.IntRange(min=1), default=None, help="并发拉取数")
@click.pass_context
def main(
    ctx: click.Context, config_path: str,
    registry: str | None, cache_dir: str | None, jobs: int | None,
) -> None:
    """cpppm - 原生库包管理器"""
    setup_logging(
        level=os.getenv("CPPPM_LOG_LEVEL", "WARNING"),
        json_output=os.getenv("CPPPM_LOG_JSON", "") == "1",
    )
    try:
        cfg = init_config(config_path)
    except CpppmError as e:
        raise click.ClickException(str(e)) from e

    overrides: dict[str, object] = {}
    if registry:
        overrides["registry_url"] = registry
    if cache_dir:
        overrides["cache_dir"] = cache_dir
    if jobs:
        overrides["max_workers"] = jobs
    ctx.obj = replace(cfg, **overrides) if overrides else cfg


def current_config(ctx: click.Context) -> Config:
    cfg = ctx.find_root().obj
    return cfg if isinstance(cfg, Config) else Config()


# 注册各领域子命令
from cpppm.cli.cmd_install import register as _reg_install  # noqa: E402
from cpppm.cli.cmd_cache import register as _reg_cache  # noqa: E402

_reg_install(main)
_reg_cache(main)
