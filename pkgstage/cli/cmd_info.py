"""CLI — 查询与审计命令"""

from __future__ import annotations

import sys

import click

from pkgstage.cli import _svc
from pkgstage.core.exceptions import PkgStageError


def register(group: click.Group) -> None:
    group.add_command(list_packages)
    group.add_command(show_depends)
    group.add_command(source_check)
    group.add_command(external_deps)


@click.command(name="list")
def list_packages() -> None:
    """列出所有已声明的包"""
    try:
        packages = _svc().packages.list_packages()
    except PkgStageError as e:
        raise click.ClickException(str(e)) from e
    if not packages:
        click.echo("没有已声明的包。")
        return
    for p in packages:
        click.echo(
            f"  {p['name']:24s} {p['type']:6s} {p['version']:16s} "
            f"[{p['site_method']:5s}] {p['config_symbol']}"
        )


@click.command(name="show-depends")
@click.argument("package")
def show_depends(package: str) -> None:
    """显示包的直接依赖"""
    try:
        deps = _svc().packages.show_depends(package)
    except PkgStageError as e:
        raise click.ClickException(str(e)) from e
    click.echo(" ".join(deps))


@click.command(name="source-check")
@click.argument("packages", nargs=-1)
def source_check(packages: tuple[str, ...]) -> None:
    """验证依赖闭包内所有包的源码可达（不下载）"""
    try:
        results = _svc().packages.source_check(list(packages) or None)
    except PkgStageError as e:
        raise click.ClickException(str(e)) from e
    for name, ok in results:
        click.echo(f"  {name:24s} {'ok' if ok else '不可达'}")
    if not all(ok for _, ok in results):
        sys.exit(1)


@click.command(name="external-deps")
@click.argument("packages", nargs=-1)
def external_deps(packages: tuple[str, ...]) -> None:
    """列出构建将要拉取的全部文件"""
    try:
        files = _svc().packages.external_deps(list(packages) or None)
    except PkgStageError as e:
        raise click.ClickException(str(e)) from e
    for f in files:
        click.echo(f)
