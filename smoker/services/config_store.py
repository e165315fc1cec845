"""项目清单存储

配置文件是一个 YAML 映射，顶层键为项目名:

    Jifty:
      repository:
        type: SVN
        uri: svn+ssh://svn.jifty.org/svn/jifty.org/jifty
      revision: 1332
      root_dir: trunk
      configure_cmd: perl Makefile.PL --skipdeps && make
      dependencies:
        - Jifty-DBI

每次冒烟后只回写对应项目的 revision 字段，其余内容保持原样。
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml

from smoker.core.exceptions import ConfigError
from smoker.core.models import ProjectConfig, normalize_repo_type
from smoker.utils.yaml_io import load_yaml, save_yaml

logger = logging.getLogger(__name__)

# 旧版配置把 SVN 地址直接写在项目下
LEGACY_URI_KEY = "svn_uri"


class ConfigStore:
    """项目清单的加载、校验与 revision 回写"""

    def __init__(self, config_file: str | Path) -> None:
        # 转为绝对路径，后续无论工作目录在哪都能回写
        self.config_file = Path(config_file).resolve()
        self.projects: dict[str, ProjectConfig] = {}

    def load(self) -> dict[str, ProjectConfig]:
        """读取并校验清单；发现旧格式时迁移并立即写回"""
        if not self.config_file.exists():
            raise ConfigError(f"配置文件不存在: {self.config_file}")
        raw = self._read()

        if self.migrate(raw):
            logger.info("已迁移旧格式配置: %s", self.config_file)
            save_yaml(self.config_file, raw)

        try:
            self.projects = {
                str(name): ProjectConfig.from_dict(str(name), entry)
                for name, entry in raw.items()
            }
        except (TypeError, ValueError, AttributeError) as e:
            raise ConfigError(f"配置文件字段无效 {self.config_file}: {e}") from e
        self.validate()
        return self.projects

    @staticmethod
    def migrate(raw: dict[str, Any]) -> bool:
        """把 svn_uri 改写为 repository: {type: SVN, uri}，返回是否有改动"""
        migrated = False
        for entry in raw.values():
            if isinstance(entry, dict) and entry.get(LEGACY_URI_KEY):
                entry["repository"] = {
                    "type": "SVN",
                    "uri": entry.pop(LEGACY_URI_KEY),
                }
                migrated = True
        return migrated

    def validate(self) -> None:
        """校验仓库类型与依赖引用，错误一次性汇总抛出"""
        errors: list[str] = []
        for name, project in self.projects.items():
            if not normalize_repo_type(project.repository.type):
                errors.append(f"{name}: 不支持的代码仓类型 {project.repository.type!r}")
            if not project.repository.uri:
                errors.append(f"{name}: 缺少 repository.uri")
            for dep in project.dependencies:
                if dep not in self.projects:
                    errors.append(f"{name}: 依赖的项目未定义 {dep!r}")
        if errors:
            raise ConfigError(
                f"配置文件无效 {self.config_file}:\n  " + "\n  ".join(errors)
            )

    def get(self, name: str) -> ProjectConfig:
        try:
            return self.projects[name]
        except KeyError:
            raise ConfigError(f"no such project: {name!r}") from None

    def names(self) -> list[str]:
        return list(self.projects)

    def update_revision(self, project: str, revision: Any) -> bool:
        """重新读取文件，只改写该项目的 revision 后写回，返回是否写入

        读-改-写之间的外部修改会被保留；同时写入的多个进程不受保护（单写者假设）。
        运行期间项目已从文件中删除时不写回。
        """
        raw = self._read()
        entry = raw.get(project)
        if entry is None:
            logger.warning("%s 已不在 %s 中，不记录 revision=%s",
                           project, self.config_file, revision)
            return False
        entry["revision"] = revision
        save_yaml(self.config_file, raw)
        if project in self.projects:
            self.projects[project].revision = revision
        logger.info("已记录 %s revision=%s", project, revision)
        return True

    def _read(self) -> dict[str, Any]:
        try:
            raw = load_yaml(self.config_file)
        except (yaml.YAMLError, ValueError) as e:
            raise ConfigError(f"无法解析配置文件 {self.config_file}: {e}") from e
        for name, entry in raw.items():
            if not isinstance(entry, dict):
                raise ConfigError(f"{name}: 配置项必须是映射")
        return raw
