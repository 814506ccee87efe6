"""统一配置管理模块。

启动时从环境变量加载一次，得到不可变的 AppConfig，显式传递给需要它的组件。
"""

import os
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from functools import lru_cache
from pathlib import Path

from .exceptions import ConfigurationError, ValidationError
from .models.compression_config import QualityRange


def _default_workers() -> int:
    return os.cpu_count() or 1


@dataclass(frozen=True)
class ServerDefaults:
    """HTTP 服务配置"""

    HOST: str = "127.0.0.1"
    PORT: int = 3030


@dataclass(frozen=True)
class CompressionDefaults:
    """压缩相关的默认配置"""

    # 文件大小限制
    MAX_FILE_SIZE_MB: float = 50.0

    # 进程级默认质量范围，覆盖预设；None 表示使用预设
    DEFAULT_PNG_QUALITY: QualityRange | None = None

    @property
    def max_file_size_bytes(self) -> int:
        return int(self.MAX_FILE_SIZE_MB * 1024 * 1024)


@dataclass(frozen=True)
class ProcessingDefaults:
    """处理相关的默认配置"""

    # 并发设置
    MAX_WORKERS: int = field(default_factory=_default_workers)
    QUEUE_SIZE: int | None = None  # None 表示 2 × MAX_WORKERS
    EXECUTOR_TYPE: str = "thread"

    # 远程下载
    FETCH_TIMEOUT: float = 20.0

    # HTTP 批次超时，超时后停止派发新任务
    BATCH_TIMEOUT: float = 300.0

    # API 接受本地路径时的根目录；None 表示 API 不接受本地路径
    ALLOWED_ROOT: Path | None = None

    @property
    def queue_size(self) -> int:
        return self.QUEUE_SIZE if self.QUEUE_SIZE is not None else 2 * self.MAX_WORKERS


@dataclass(frozen=True)
class LoggingDefaults:
    """日志相关的默认配置"""

    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    @property
    def log_level(self) -> str:
        return self.LOG_LEVEL

    @property
    def log_format(self) -> str:
        return self.LOG_FORMAT


@dataclass(frozen=True)
class AppConfig:
    """应用程序配置（不可变）"""

    server: ServerDefaults = field(default_factory=ServerDefaults)
    compression: CompressionDefaults = field(default_factory=CompressionDefaults)
    processing: ProcessingDefaults = field(default_factory=ProcessingDefaults)
    logging: LoggingDefaults = field(default_factory=LoggingDefaults)

    def with_workers(self, max_workers: int) -> "AppConfig":
        """返回替换了工作线程数的新配置（CLI --jobs 使用）"""
        if max_workers <= 0:
            raise ConfigurationError("max_workers 必须大于 0", "MAX_WORKERS")
        return replace(
            self, processing=replace(self.processing, MAX_WORKERS=max_workers)
        )


_LOG_LEVELS = {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}


def _parse_positive_int(name: str, value: str) -> int:
    try:
        parsed = int(value)
    except ValueError as e:
        raise ConfigurationError(f"{name} 必须是整数，得到: {value!r}", name) from e
    if parsed <= 0:
        raise ConfigurationError(f"{name} 必须大于 0，得到: {parsed}", name)
    return parsed


def _parse_positive_float(name: str, value: str) -> float:
    try:
        parsed = float(value)
    except ValueError as e:
        raise ConfigurationError(f"{name} 必须是数字，得到: {value!r}", name) from e
    if parsed <= 0:
        raise ConfigurationError(f"{name} 必须大于 0，得到: {parsed}", name)
    return parsed


def load_config(environ: Mapping[str, str] | None = None) -> AppConfig:
    """从环境变量加载配置

    Args:
        environ: 环境变量映射，默认 os.environ

    Raises:
        ConfigurationError: 环境变量取值无效
    """
    env = os.environ if environ is None else environ
    server = ServerDefaults()
    compression = CompressionDefaults()
    processing = ProcessingDefaults()
    logging_defaults = LoggingDefaults()

    # 服务配置
    if host := env.get("HOST"):
        server = replace(server, HOST=host)
    if port := env.get("PORT"):
        parsed_port = _parse_positive_int("PORT", port)
        if parsed_port > 65535:
            raise ConfigurationError(f"PORT 超出范围: {parsed_port}", "PORT")
        server = replace(server, PORT=parsed_port)

    # 压缩配置
    if max_size := env.get("MAX_FILE_SIZE_MB"):
        compression = replace(
            compression,
            MAX_FILE_SIZE_MB=_parse_positive_float("MAX_FILE_SIZE_MB", max_size),
        )
    if default_quality := env.get("DEFAULT_PNG_QUALITY"):
        try:
            quality_range = QualityRange.parse(default_quality)
        except (ValueError, ValidationError) as e:
            raise ConfigurationError(
                f"DEFAULT_PNG_QUALITY 无效: {default_quality!r}", "DEFAULT_PNG_QUALITY"
            ) from e
        compression = replace(compression, DEFAULT_PNG_QUALITY=quality_range)

    # 并发与下载配置
    if max_workers := env.get("MAX_WORKERS"):
        processing = replace(
            processing, MAX_WORKERS=_parse_positive_int("MAX_WORKERS", max_workers)
        )
    if queue_size := env.get("QUEUE_SIZE"):
        processing = replace(
            processing, QUEUE_SIZE=_parse_positive_int("QUEUE_SIZE", queue_size)
        )
    if executor_type := env.get("EXECUTOR_TYPE"):
        if executor_type.lower() not in {"thread", "process"}:
            raise ConfigurationError(
                f"EXECUTOR_TYPE 必须是 thread 或 process，得到: {executor_type!r}",
                "EXECUTOR_TYPE",
            )
        processing = replace(processing, EXECUTOR_TYPE=executor_type.lower())
    if fetch_timeout := env.get("FETCH_TIMEOUT"):
        processing = replace(
            processing,
            FETCH_TIMEOUT=_parse_positive_float("FETCH_TIMEOUT", fetch_timeout),
        )
    if batch_timeout := env.get("BATCH_TIMEOUT"):
        processing = replace(
            processing,
            BATCH_TIMEOUT=_parse_positive_float("BATCH_TIMEOUT", batch_timeout),
        )
    if allowed_root := env.get("ALLOWED_ROOT"):
        processing = replace(processing, ALLOWED_ROOT=Path(allowed_root).resolve())

    # 日志配置
    if log_level := env.get("LOG_LEVEL"):
        level = log_level.upper()
        if level not in _LOG_LEVELS:
            raise ConfigurationError(f"LOG_LEVEL 无效: {log_level!r}", "LOG_LEVEL")
        logging_defaults = replace(logging_defaults, LOG_LEVEL=level)

    return AppConfig(
        server=server,
        compression=compression,
        processing=processing,
        logging=logging_defaults,
    )


@lru_cache(maxsize=1)
def get_config() -> AppConfig:
    """获取进程级配置（首次调用时加载）"""
    return load_config()


def reset_config() -> None:
    """重置配置（主要用于测试）"""
    get_config.cache_clear()
