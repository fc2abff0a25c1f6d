"""CLI - 安装与依赖解析命令"""

from __future__ import annotations

import logging
import signal
import threading
from typing import Any

import click

from cpppm.cli import current_config
from cpppm.core.dep.planner import build_order
from cpppm.core.dep.resolver import DependencyResolver
from cpppm.core.exceptions import BuildFailed, CpppmError
from cpppm.services.container import ServiceContainer

logger = logging.getLogger(__name__)

EXIT_INTERRUPTED = 130


def register(group: click.Group) -> None:
    group.add_command(install)
    group.add_command(resolve)


def _echo_progress(stage: str, message: str) -> None:
    click.echo(f"[{stage:>9s}] {message}")


def _fail(e: CpppmError) -> click.ClickException:
    return click.ClickException(f"[{e.code}] {e}")


@click.command()
@click.argument("name")
@click.option("--force", is_flag=True, help="忽略已安装状态，重新构建")
@click.pass_context
def install(ctx: click.Context, name: str, force: bool) -> None:
    """安装包及其全部依赖"""
    cancel = threading.Event()
    container = ServiceContainer(current_config(ctx), progress=_echo_progress, cancel=cancel)

    def _on_sigterm(signum: int, frame: Any) -> None:
        logger.warning("收到 SIGTERM，停止后续拉取与构建")
        cancel.set()

    previous = signal.signal(signal.SIGTERM, _on_sigterm)
    try:
        report = container.manager.install(name, force=force)
    except KeyboardInterrupt:
        cancel.set()
        click.echo("已中断", err=True)
        ctx.exit(EXIT_INTERRUPTED)
    except BuildFailed as e:
        installed = sorted(container.manager.installed)
        if installed:
            click.echo(f"已提交的包: {', '.join(installed)}", err=True)
        raise _fail(e) from e
    except CpppmError as e:
        raise _fail(e) from e
    finally:
        signal.signal(signal.SIGTERM, previous)

    click.echo(
        f"Package {name} installed successfully "
        f"({len(report.installed)} built, {len(report.skipped)} already installed)"
    )


@click.command()
@click.argument("name")
@click.pass_context
def resolve(ctx: click.Context, name: str) -> None:
    """解析依赖并按构建顺序列出（不下载、不构建）"""
    container = ServiceContainer(current_config(ctx))
    try:
        ordered = build_order(DependencyResolver(container.registry).resolve(name))
    except CpppmError as e:
        raise _fail(e) from e
    for i, pkg in enumerate(ordered, 1):
        deps = ", ".join(pkg.dependencies) or "-"
        click.echo(f"  {i:3d}. {pkg.name:24s} {pkg.version:12s} [{pkg.build_type}] deps: {deps}")
