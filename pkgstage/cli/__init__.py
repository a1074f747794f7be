"""pkgstage 命令行接口

CLI 按领域拆分为子模块，每个模块注册自己的命令到 main group。
"""

import os
from typing import Any

import click

from pkgstage import __version__
from pkgstage.core.config import init_config
from pkgstage.services.container import get_container, reset_container
from pkgstage.utils.logger import setup_logging


def _svc() -> Any:
    """获取全局服务容器的快捷方式"""
    return get_container()


@click.group()
@click.version_option(version=__version__)
@click.option("--config", "config_path", default="pkgstage.yml", help="配置文件路径")
def main(config_path: str) -> None:
    """pkgstage - 交叉编译包构建编排"""
    setup_logging(
        level=os.getenv("PKGSTAGE_LOG_LEVEL", "INFO"),
        json_output=os.getenv("PKGSTAGE_LOG_JSON", "") == "1",
    )
    init_config(config_path)
    reset_container()


# 注册各领域子命令
from pkgstage.cli.cmd_make import register as _reg_make  # noqa: E402
from pkgstage.cli.cmd_info import register as _reg_info  # noqa: E402

_reg_make(main)
_reg_info(main)
