"""CLI - 缓存查询命令"""

from __future__ import annotations

import click

from cpppm.cli import current_config
from cpppm.core.dep.cache import CacheLayout


def register(group: click.Group) -> None:
    group.add_command(cached)


@click.command()
@click.argument("name", required=False)
@click.pass_context
def cached(ctx: click.Context, name: str | None) -> None:
    """列出缓存中已拉取的包和版本"""
    layout = CacheLayout(current_config(ctx).cache_path)
    names = [name] if name else layout.list_packages()
    shown = 0
    for n in names:
        versions = layout.list_versions(n)
        if not versions:
            continue
        click.echo(f"  {n:24s} {', '.join(versions)}")
        shown += 1
    if not shown:
        click.echo(f"缓存中没有 {name}。" if name else "缓存为空。")
