"""chimps-smoker 命令行接口

CLI 按领域拆分为子模块，每个模块注册自己的命令到 main group。
"""

import os

import click

from smoker import __version__
from smoker.utils.logger import setup_logging


@click.group()
@click.version_option(version=__version__)
def main() -> None:
    """chimps-smoker - 轮询代码仓并上报冒烟测试报告"""
    setup_logging(
        level=os.getenv("SMOKER_LOG_LEVEL", "INFO"),
        json_output=os.getenv("SMOKER_LOG_JSON", "") == "1",
    )


# 注册各领域子命令
from smoker.cli.cmd_smoke import register as _reg_smoke  # noqa: E402

_reg_smoke(main)
