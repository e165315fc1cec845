"""代码仓来源 — 封闭的 VCS 变体集合

- base.py: RepositorySource 公共接口与轮询逻辑
- git.py: GitSource
- svn.py: SubversionSource

配置中的 repository.type 标签经 create_source() 选择具体变体，
新增 VCS 只需新增一个子类并登记到 _SOURCES。
"""

from __future__ import annotations

from typing import Any

from smoker.core.exceptions import ConfigError
from smoker.core.models import RepositorySpec, normalize_repo_type
from smoker.services.source.base import RepositorySource
from smoker.services.source.git import GitSource
from smoker.services.source.svn import SubversionSource

_SOURCES: dict[str, type[RepositorySource]] = {
    cls.type_name: cls for cls in (GitSource, SubversionSource)
}


def create_source(spec: RepositorySpec, **kwargs: Any) -> RepositorySource:
    """根据 repository.type 创建来源实例

    kwargs 透传给具体变体（context / executor，GitSource 另接受 remote）。
    """
    kind = normalize_repo_type(spec.type)
    cls = _SOURCES.get(kind)
    if cls is None:
        raise ConfigError(f"不支持的代码仓类型: {spec.type!r}")
    if cls is not GitSource:
        kwargs.pop("remote", None)
    return cls(spec, **kwargs)


__all__ = [
    "RepositorySource",
    "GitSource",
    "SubversionSource",
    "create_source",
]
