"""图像压缩处理引擎模块。

包含批量处理、并发执行和任务构建等核心处理逻辑。
"""

from .batch import BatchProcessor
from .concurrent_executor import ConcurrentExecutor
from .config import JobBuilder


__all__ = [
    "BatchProcessor",
    "ConcurrentExecutor",
    "JobBuilder",
]
