"""集中配置管理

冒烟器运行参数（轮询间隔、并行度、上报地址、依赖失败策略等）的统一入口。
支持从 YAML 文件加载 + 命令行覆盖。项目清单本身由 ConfigStore 管理。
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from typing import Any

from smoker.core.exceptions import ConfigError
from smoker.core.models import DependencyFailurePolicy
from smoker.utils.yaml_io import load_yaml

logger = logging.getLogger(__name__)


@dataclass
class SmokerConfig:
    """冒烟器全局配置"""

    # 上报
    server: str = ""

    # 轮询
    sleep: int = 60
    jobs: int = 1

    # 检出
    workspace_dir: str = ""          # 空 = 系统临时目录
    workspace_prefix: str = "chimps-"
    git_remote: str = "origin"

    # 构建
    lib_env_var: str = "PERL5LIB"
    dependency_failure_policy: str = DependencyFailurePolicy.ADVANCE.value

    # 报告
    report_dir: str = ""             # 空 = 系统临时目录
    keep_reports: bool = False

    # 自定义扩展 (放不到字段里的配置项)
    extra: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.sleep < 0:
            raise ConfigError(f"sleep 不能为负数: {self.sleep}")
        if self.jobs < 1:
            raise ConfigError(f"jobs 至少为 1: {self.jobs}")
        try:
            DependencyFailurePolicy(self.dependency_failure_policy)
        except ValueError as e:
            raise ConfigError(
                f"未知的依赖失败策略: {self.dependency_failure_policy}"
            ) from e

    @property
    def policy(self) -> DependencyFailurePolicy:
        return DependencyFailurePolicy(self.dependency_failure_policy)

    @classmethod
    def from_file(cls, path: str) -> SmokerConfig:
        """从 YAML 文件加载配置，不存在则返回默认"""
        data = load_yaml(path)
        if not data:
            return cls()
        known = {f for f in cls.__dataclass_fields__ if f != "extra"}
        matched = {k: v for k, v in data.items() if k in known}
        extra = {k: v for k, v in data.items() if k not in known}
        try:
            cfg = cls(**matched)
        except TypeError as e:
            raise ConfigError(f"配置文件字段无效 {path}: {e}") from e
        cfg.extra = extra
        return cfg

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


# 全局单例，首次 import 时不加载文件；由 CLI 入口显式初始化
_current: SmokerConfig | None = None


def get_config() -> SmokerConfig:
    """获取当前配置（未初始化则返回默认值）"""
    global _current  # noqa: PLW0603
    if _current is None:
        _current = SmokerConfig()
    return _current


def init_config(path: str = "", **overrides: Any) -> SmokerConfig:
    """从文件初始化全局配置，非 None 的 overrides 覆盖文件中的值"""
    global _current  # noqa: PLW0603
    cfg = SmokerConfig.from_file(path) if path else SmokerConfig()
    data = cfg.to_dict()
    data.update({k: v for k, v in overrides.items() if v is not None})
    _current = SmokerConfig(**data)
    if path:
        logger.info("配置已加载: %s", path)
    return _current


def reset_config() -> None:
    """清除全局配置（测试用）"""
    global _current  # noqa: PLW0603
    _current = None
