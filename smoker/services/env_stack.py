"""环境变量栈

为每个项目（及其依赖）的构建压入一帧环境变量，测试结束后按 LIFO 全部恢复。
新值中的 $NAME / ${NAME} 会替换为该变量的旧值，便于 PATH 类变量累加:

    env:
      PATH: /opt/tool/bin:$PATH
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterator, Mapping, MutableMapping
from contextlib import contextmanager

logger = logging.getLogger(__name__)

# 帧内 None 表示压栈前该变量不存在
EnvFrame = dict[str, "str | None"]


def substitute_previous(name: str, value: str, previous: str | None) -> str:
    """把 value 中引用 name 自身的占位符替换为旧值（不存在时替换为空串）"""
    quoted = re.escape(name)
    pattern = re.compile(r"\$(?:\{" + quoted + r"\}|" + quoted + r"(?![A-Za-z0-9_]))")
    return pattern.sub(lambda _m: previous or "", value)


class EnvironmentStack:
    """作用于一个环境映射的压栈/出栈器

    environ 通常是 ExecutionContext.env；传入 os.environ 时直接作用于当前进程。
    """

    def __init__(self, environ: MutableMapping[str, str]) -> None:
        self.environ = environ
        self._frames: list[EnvFrame] = []

    @property
    def depth(self) -> int:
        return len(self._frames)

    def push(self, variables: Mapping[str, str]) -> EnvFrame:
        """记录变量旧值并设置新值，返回新压入的帧"""
        frame: EnvFrame = {}
        for name, raw in variables.items():
            previous = self.environ.get(name)
            frame[name] = previous
            value = substitute_previous(name, "" if raw is None else str(raw), previous)
            logger.info("设置环境变量 %s=%s", name, value)
            self.environ[name] = value
        self._frames.append(frame)
        return frame

    def pop(self) -> EnvFrame | None:
        """弹出并恢复最近一帧"""
        if not self._frames:
            return None
        frame = self._frames.pop()
        for name, previous in frame.items():
            if previous is None:
                logger.info("删除环境变量 %s", name)
                self.environ.pop(name, None)
            else:
                logger.info("恢复环境变量 %s=%s", name, previous)
                self.environ[name] = previous
        return frame

    def pop_all(self) -> int:
        """按压栈的逆序恢复所有帧，返回恢复的帧数"""
        count = 0
        while self._frames:
            self.pop()
            count += 1
        return count

    @contextmanager
    def scope(self) -> Iterator[EnvironmentStack]:
        """在 with 块结束时（无论成功或异常）恢复全部帧"""
        try:
            yield self
        finally:
            self.pop_all()
