"""输入解析模块。

把本地路径、远程 URL、内联字节统一解析为带大小上限的原始字节。
"""

import time
from pathlib import Path
from urllib.parse import urlsplit

import httpx
from humanize import naturalsize

from ..config import AppConfig
from ..exceptions import (
    PayloadTooLargeError,
    RemoteFetchFailedError,
    SourceUnreachableError,
)
from ..models.constants import ProcessingDefaults
from ..models.image_source import (
    ImageSource,
    InlineBytesSource,
    LocalPathSource,
    RemoteUrlSource,
    ResolvedInput,
)
from ..utils.logging_helpers import get_logger
from ..utils.message_formatter import MessageFormatter


logger = get_logger()


class InputResolver:
    """输入解析器

    Args:
        max_bytes: 单个输入的字节上限
        fetch_timeout: 远程下载超时（秒），同时作为整体下载截止时间
        allowed_root: 本地路径必须位于该目录内，None 表示不限制
        allow_local_paths: 是否接受本地路径
        transport: 可注入的 httpx 传输层（测试用）
    """

    def __init__(
        self,
        max_bytes: int,
        fetch_timeout: float = 20.0,
        allowed_root: Path | None = None,
        allow_local_paths: bool = True,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.max_bytes = max_bytes
        self.fetch_timeout = fetch_timeout
        self.allowed_root = allowed_root.resolve() if allowed_root else None
        self.allow_local_paths = allow_local_paths
        self.transport = transport

    @classmethod
    def from_config(
        cls,
        config: AppConfig,
        *,
        restrict_to_root: bool = False,
        transport: httpx.BaseTransport | None = None,
    ) -> "InputResolver":
        """从应用配置构建

        restrict_to_root 为 True 时（HTTP API），只有配置了 ALLOWED_ROOT
        才接受本地路径，且路径必须位于其中。
        """
        allowed_root = config.processing.ALLOWED_ROOT
        return cls(
            max_bytes=config.compression.max_file_size_bytes,
            fetch_timeout=config.processing.FETCH_TIMEOUT,
            allowed_root=allowed_root,
            allow_local_paths=(allowed_root is not None) or not restrict_to_root,
            transport=transport,
        )

    def resolve(self, source: ImageSource) -> ResolvedInput:
        """解析输入来源

        Raises:
            SourceUnreachableError: 本地文件不可达
            RemoteFetchFailedError: 远程下载失败
            PayloadTooLargeError: 超过大小上限
        """
        match source:
            case LocalPathSource():
                data = self._read_local(source)
            case RemoteUrlSource():
                data = self._fetch_remote(source)
            case InlineBytesSource():
                self._check_size(len(source.data), source.label)
                data = source.data

        return ResolvedInput(raw_bytes=data, origin=source, size_bytes=len(data))

    def _check_size(self, size: int, label: str) -> None:
        if size > self.max_bytes:
            raise PayloadTooLargeError(
                MessageFormatter.payload_too_large(label, self.max_bytes), label
            )

    def _read_local(self, source: LocalPathSource) -> bytes:
        label = source.label
        if not self.allow_local_paths:
            raise SourceUnreachableError("当前接口不接受本地路径", label)

        try:
            path = source.path.expanduser().resolve(strict=True)
        except FileNotFoundError as e:
            raise SourceUnreachableError(
                MessageFormatter.file_not_found(source.path), label
            ) from e
        except OSError as e:
            raise SourceUnreachableError(
                MessageFormatter.operation_failed("路径解析", source.path, e), label
            ) from e

        if self.allowed_root is not None and not path.is_relative_to(self.allowed_root):
            raise SourceUnreachableError(
                MessageFormatter.outside_root(source.path, self.allowed_root), label
            )
        if not path.is_file():
            raise SourceUnreachableError(MessageFormatter.path_not_file(path), label)

        try:
            self._check_size(path.stat().st_size, label)
            data = path.read_bytes()
        except PermissionError as e:
            raise SourceUnreachableError(
                MessageFormatter.permission_error(path, "读取"), label
            ) from e
        except OSError as e:
            raise SourceUnreachableError(
                MessageFormatter.operation_failed("读取文件", path, e), label
            ) from e

        # 读取期间文件可能被追加
        self._check_size(len(data), label)
        logger.debug(f"读取本地文件 {path} ({naturalsize(len(data))})")
        return data

    def _fetch_remote(self, source: RemoteUrlSource) -> bytes:
        url = source.url
        if urlsplit(url).scheme.lower() not in ("http", "https"):
            raise RemoteFetchFailedError(f"只支持 http/https URL: {url}", url)

        deadline = time.monotonic() + self.fetch_timeout
        buffer = bytearray()
        try:
            with httpx.Client(
                timeout=self.fetch_timeout,
                follow_redirects=True,
                transport=self.transport,
            ) as client:
                logger.debug(f"下载远程图片 {url}")
                with client.stream("GET", url) as response:
                    if not response.is_success:
                        raise RemoteFetchFailedError(
                            f"远程服务器返回 HTTP {response.status_code}: {url}", url
                        )

                    declared = response.headers.get("content-length", "")
                    if declared.isdigit():
                        self._check_size(int(declared), url)

                    chunk_size = ProcessingDefaults.FETCH_CHUNK_SIZE
                    for chunk in response.iter_bytes(chunk_size):
                        buffer.extend(chunk)
                        self._check_size(len(buffer), url)
                        if time.monotonic() > deadline:
                            raise RemoteFetchFailedError(
                                f"下载超时（{self.fetch_timeout:g} 秒）: {url}", url
                            )
        except httpx.HTTPError as e:
            raise RemoteFetchFailedError(
                MessageFormatter.operation_failed("下载", url, e), url
            ) from e

        if not buffer:
            raise RemoteFetchFailedError(f"远程响应内容为空: {url}", url)

        logger.debug(f"下载完成 {url} ({naturalsize(len(buffer))})")
        return bytes(buffer)
