"""CLI — 构建入口命令"""

from __future__ import annotations

import sys

import click

from pkgstage.cli import _svc
from pkgstage.core.exceptions import PkgStageError


def register(group: click.Group) -> None:
    group.add_command(make)
    group.add_command(build)


@click.command()
@click.argument("targets", nargs=-1, required=True)
def make(targets: tuple[str, ...]) -> None:
    """执行 <pkg>[-stage] 目标（如 zlib、zlib-configure、zlib-rebuild）"""
    try:
        svc = _svc().packages
        for target in targets:
            result = svc.make(target)
            for line in result.output:
                click.echo(line)
            if not result.success:
                click.echo(f"失败: {result.package} 阶段 {result.stage}: {result.message}", err=True)
                sys.exit(1)
            if result.executed:
                click.echo(f"{target}: 执行 {len(result.executed)} 个阶段")
    except PkgStageError as e:
        raise click.ClickException(str(e)) from e


@click.command()
@click.argument("packages", nargs=-1, required=True)
@click.option("--jobs", "-j", default=None, type=int, help="并行包数（默认取配置 max_workers）")
def build(packages: tuple[str, ...], jobs: int | None) -> None:
    """安装多个包，无依赖关系的包并行构建"""
    try:
        results = _svc().packages.build(list(packages), max_workers=jobs)
    except PkgStageError as e:
        raise click.ClickException(str(e)) from e

    for r in results:
        detail = f" ({r.stage}: {r.message})" if r.status == "failed" else ""
        if r.status == "blocked":
            detail = f" ({r.message})"
        click.echo(f"  {r.name:24s} {r.status:8s} {r.duration:6.1f}s{detail}")
    failed = [r for r in results if not r.success]
    if failed:
        click.echo(f"失败 {len(failed)} / {len(results)} 个包", err=True)
        sys.exit(1)
