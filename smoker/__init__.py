"""chimps-smoker - 轮询代码仓、检出依赖、构建测试并上报冒烟报告"""

__version__ = "0.1.0"
