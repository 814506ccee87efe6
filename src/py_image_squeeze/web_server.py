"""图像压缩 HTTP 服务。

POST /api/compress 接收 multipart 表单：上传文件、本地路径或远程 URL，
单个任务直接返回压缩后的字节，多个任务返回 zip 或 JSON。
"""

import asyncio
import base64
import io
import json
import threading
import zipfile
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from functools import partial
from typing import Any
from urllib.parse import quote

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response
from starlette.concurrency import run_in_threadpool
from starlette.datastructures import FormData, UploadFile

from . import __version__
from .compressor import ImageCompressor
from .config import AppConfig, get_config
from .exceptions import ValidationError
from .models import (
    BatchResult,
    CompressionJob,
    ErrorKind,
    JobFailure,
    JobResult,
    JobSuccess,
    OutputFormat,
)
from .models.constants import ProcessingDefaults
from .utils.logging_helpers import configure_logging, get_logger


logger = get_logger()

# 错误类别到 HTTP 状态码
ERROR_STATUS: dict[ErrorKind, int] = {
    ErrorKind.SOURCE_UNREACHABLE: 404,
    ErrorKind.REMOTE_FETCH_FAILED: 502,
    ErrorKind.PAYLOAD_TOO_LARGE: 413,
    ErrorKind.UNSUPPORTED_FORMAT: 415,
    ErrorKind.INVALID_RANGE: 422,
    ErrorKind.CODEC_DECODE_FAILED: 422,
    ErrorKind.CODEC_ENCODE_FAILED: 500,
    ErrorKind.INTERNAL_IO: 500,
    ErrorKind.CANCELLED: 499,
}

RESPONSE_FORMATS = ("zip", "json")

# 等待客户端断开的检查间隔（秒）
_WATCH_INTERVAL = 0.1


def _output_filename(result: JobSuccess, index: int | None = None) -> str:
    """下载文件名 c_<原文件名主干><新扩展名>"""
    label = result.source_label.replace("\\", "/").split("?", 1)[0]
    stem = label.rsplit("/", 1)[-1].rsplit(".", 1)[0] or "image"
    if stem.startswith("<"):
        stem = "image"
    name = f"{ProcessingDefaults.OUTPUT_PREFIX}{stem}{result.extension}"
    return name if index is None else f"{index:03d}_{name}"


class ResponseBuilder:
    """HTTP 响应构建器"""

    @staticmethod
    def invalid_request(error: ValidationError) -> JSONResponse:
        content: dict[str, Any] = {
            "success": False,
            "error_kind": "InvalidRequest",
            "message": error.message,
        }
        if error.field:
            content["field"] = error.field
        return JSONResponse(status_code=400, content=content)

    @staticmethod
    def failure(result: JobFailure) -> JSONResponse:
        return JSONResponse(
            status_code=ERROR_STATUS.get(result.error_kind, 500),
            content={
                "success": False,
                "error_kind": result.error_kind.value,
                "message": result.message,
            },
        )

    @staticmethod
    def success(result: JobSuccess) -> Response:
        filename = _output_filename(result)
        return Response(
            content=result.output_bytes,
            media_type=result.mime_type,
            headers={
                "Content-Disposition": (
                    f"attachment; filename*=UTF-8''{quote(filename)}"
                ),
                "X-Original-Size": str(result.original_size),
                "X-Compressed-Size": str(result.compressed_size),
                "X-Output-Format": result.output_format.value,
            },
        )

    @staticmethod
    def single(result: JobResult) -> Response:
        match result:
            case JobSuccess():
                return ResponseBuilder.success(result)
            case JobFailure():
                return ResponseBuilder.failure(result)

    @staticmethod
    def batch_zip(batch: BatchResult) -> Response:
        """所有成功输出 + manifest.json"""
        buffer = io.BytesIO()
        manifest: list[dict[str, Any]] = []
        with zipfile.ZipFile(buffer, "w", zipfile.ZIP_STORED) as archive:
            for index, result in enumerate(batch.results):
                entry = result.to_summary_dict()
                if isinstance(result, JobSuccess):
                    name = _output_filename(result, index)
                    archive.writestr(name, result.output_bytes)
                    entry["file"] = name
                manifest.append(entry)
            archive.writestr(
                "manifest.json",
                json.dumps(
                    {"summary": batch.get_summary(), "results": manifest},
                    ensure_ascii=False,
                    indent=2,
                ),
            )

        return Response(
            content=buffer.getvalue(),
            media_type="application/zip",
            headers={"Content-Disposition": 'attachment; filename="compressed.zip"'},
        )

    @staticmethod
    def batch_json(batch: BatchResult) -> JSONResponse:
        """按提交顺序的 JSON 数组，成功项带 base64 数据"""
        items = []
        for result in batch.results:
            entry = result.to_summary_dict()
            if isinstance(result, JobSuccess):
                entry["data"] = base64.b64encode(result.output_bytes).decode("ascii")
            items.append(entry)
        return JSONResponse(
            content={
                "success": batch.all_succeeded,
                "summary": batch.get_summary(),
                "results": items,
            }
        )


def _form_text(form: FormData, name: str) -> str | None:
    """读取文本字段，文件字段视为未提供"""
    value = form.get(name)
    return value if isinstance(value, str) else None


async def _jobs_from_form(
    form: FormData, compressor: ImageCompressor
) -> list[CompressionJob]:
    """从 multipart 表单构建任务列表

    Raises:
        ValidationError: 参数无效，或 file 与 media_url 不是恰好提供其中一种
    """
    text = partial(_form_text, form)
    settings = compressor.job_builder.build_settings(
        compression_lvl=text("compression_lvl"),
        output_format=text("output_format"),
        png_quality=text("png_quality"),
        oxipng=text("oxipng"),
        png_lossy=text("png_lossy"),
        default_format=OutputFormat.WEBP,
    )

    limit = compressor.config.compression.max_file_size_bytes
    file_jobs: list[CompressionJob] = []
    for item in form.getlist("file"):
        if isinstance(item, UploadFile):
            # 浏览器未选择文件时也会提交空的文件字段
            if not item.filename and not item.size:
                continue
            if item.size is not None and item.size > limit:
                logger.info(f"上传文件超过大小上限: {item.filename} ({item.size} 字节)")
            # 最多读入 limit + 1 字节，超限由解析阶段报告 PayloadTooLarge
            data = await item.read(limit + 1)
            file_jobs.append(
                compressor.job_builder.from_bytes(data, item.filename, settings)
            )
        elif item.strip():
            file_jobs.append(compressor.job_builder.from_path(item.strip(), settings))

    url_jobs = [
        compressor.job_builder.from_url(url, settings)
        for url in form.getlist("media_url")
        if isinstance(url, str) and url.strip()
    ]

    if bool(file_jobs) == bool(url_jobs):
        raise ValidationError("必须且只能提供 file 或 media_url 其中一种输入", "file")
    return file_jobs or url_jobs


async def _watch_request(
    request: Request, cancel_event: threading.Event, timeout: float
) -> None:
    """客户端断开或批次超时时设置取消信号"""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not cancel_event.is_set():
        if await request.is_disconnected():
            logger.warning("客户端已断开，取消剩余任务")
            cancel_event.set()
            return
        if loop.time() >= deadline:
            logger.warning(f"批次超时（{timeout:g} 秒），取消剩余任务")
            cancel_event.set()
            return
        await asyncio.sleep(_WATCH_INTERVAL)


def create_app(
    config: AppConfig | None = None, compressor: ImageCompressor | None = None
) -> FastAPI:
    """创建 FastAPI 应用

    Args:
        config: 应用配置，默认使用进程级配置
        compressor: 压缩器实例（测试时可注入带 mock 传输层的实例）
    """
    config = config or get_config()
    compressor = compressor or ImageCompressor(config, restrict_to_root=True)

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        yield
        compressor.close()

    app = FastAPI(title="py-image-squeeze", version=__version__, lifespan=lifespan)
    app.state.config = config
    app.state.compressor = compressor

    @app.get("/api/health")
    async def health() -> dict[str, Any]:
        """服务状态与编解码能力"""
        return {
            "status": "ok",
            "version": __version__,
            "capabilities": await run_in_threadpool(ImageCompressor.capabilities),
        }

    @app.post("/api/compress")
    async def compress(request: Request) -> Response:
        """压缩上传的文件、本地路径或远程 URL"""
        form = await request.form()
        try:
            jobs = await _jobs_from_form(form, compressor)
            response_format = (
                (_form_text(form, "response_format") or "zip").strip().lower()
            )
            if response_format not in RESPONSE_FORMATS:
                raise ValidationError(
                    f"response_format 必须是 zip 或 json，得到: {response_format!r}",
                    "response_format",
                )
        except ValidationError as e:
            logger.info(f"请求参数无效: {e.message}")
            return ResponseBuilder.invalid_request(e)
        finally:
            await form.close()

        cancel_event = threading.Event()
        watcher = asyncio.create_task(
            _watch_request(request, cancel_event, config.processing.BATCH_TIMEOUT)
        )
        try:
            batch = await run_in_threadpool(
                compressor.compress_jobs, jobs, cancel_event
            )
        finally:
            watcher.cancel()

        if len(jobs) == 1:
            return ResponseBuilder.single(batch.results[0])
        if response_format == "json":
            return ResponseBuilder.batch_json(batch)
        return ResponseBuilder.batch_zip(batch)

    return app


def run(
    config: AppConfig | None = None, host: str | None = None, port: int | None = None
) -> None:
    """启动 HTTP 服务（阻塞）"""
    config = config or get_config()
    configure_logging(config.logging)
    host = host or config.server.HOST
    port = port or config.server.PORT
    logger.info(f"启动 HTTP 服务: http://{host}:{port}")
    uvicorn.run(
        create_app(config),
        host=host,
        port=port,
        log_level=config.logging.LOG_LEVEL.lower(),
    )
