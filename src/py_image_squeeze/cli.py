"""命令行入口。

不带输入路径（或带 --web）时启动 HTTP 服务，否则批量压缩文件或目录。
退出码：0 全部成功或没有匹配文件，1 有任务失败，2 参数或配置错误。
"""

import argparse
import sys
from collections.abc import Sequence
from pathlib import Path

from . import __version__
from .compressor import ImageCompressor
from .config import load_config
from .exceptions import ConfigurationError, ValidationError
from .models import BatchResult, CompressionPreset, JobFailure, JobSuccess, OutputFormat
from .utils.logging_helpers import configure_logging, get_logger
from .utils.message_formatter import MessageFormatter


logger = get_logger()

EXIT_OK = 0
EXIT_FAILURES = 1
EXIT_SETUP_ERROR = 2

# --to-xxx 开关到输出格式
_FORMAT_FLAGS = {
    "webp": OutputFormat.WEBP,
    "avif": OutputFormat.AVIF,
    "jpeg": OutputFormat.JPEG,
    "png": OutputFormat.PNG,
    "tiff": OutputFormat.TIFF,
    "bmp": OutputFormat.BMP,
    "ico": OutputFormat.ICO,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="py-image-squeeze",
        description="本地图片压缩与格式转换（PNG/JPEG/WebP/AVIF/TIFF/BMP/ICO/HEIC）",
    )
    parser.add_argument(
        "input", nargs="?", type=Path, help="输入文件或目录；省略时启动 HTTP 服务"
    )
    parser.add_argument("--output", type=Path, default=None, help="输出目录")

    format_group = parser.add_mutually_exclusive_group()
    for flag, fmt in _FORMAT_FLAGS.items():
        format_group.add_argument(
            f"--to-{flag}",
            dest="output_format",
            action="store_const",
            const=fmt,
            help=f"转换为 {fmt.value.upper()}",
        )
    parser.set_defaults(output_format=OutputFormat.ORIGINAL)

    parser.add_argument(
        "--compression-lvl",
        choices=[p.value for p in CompressionPreset],
        default=CompressionPreset.MID.value,
        help="压缩等级（默认 mid）",
    )
    parser.add_argument(
        "--png-quality", default=None, metavar="MIN-MAX", help="质量范围，如 50-80"
    )
    parser.add_argument(
        "--no-oxipng", action="store_true", help="禁用 PNG 无损二次优化"
    )
    parser.add_argument(
        "--no-png-lossy", action="store_true", help="禁用 PNG 调色板量化"
    )
    parser.add_argument("--overwrite", action="store_true", help="覆盖原文件")
    parser.add_argument("--jobs", type=int, default=None, help="并发任务数")
    parser.add_argument("--web", action="store_true", help="启动 HTTP 服务")
    parser.add_argument("--host", default=None, help="HTTP 监听地址")
    parser.add_argument("--port", type=int, default=None, help="HTTP 监听端口")
    parser.add_argument(
        "--version", action="version", version=f"py-image-squeeze {__version__}"
    )
    return parser


def report(batch: BatchResult) -> None:
    """逐项输出结果与汇总"""
    for result in batch.results:
        match result:
            case JobSuccess():
                name = Path(result.source_label).name
                print(
                    MessageFormatter.size_change(
                        name, result.original_size, result.compressed_size
                    )
                )
            case JobFailure():
                print(
                    f"{result.source_label}: failed "
                    f"({result.error_kind.value}: {result.message})",
                    file=sys.stderr,
                )

    print(batch.get_summary())
    if failed := batch.get_failure_count():
        print(f"{failed} 个文件处理失败", file=sys.stderr)


def main(argv: Sequence[str] | None = None) -> int:
    """命令行主函数，返回退出码"""
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = load_config()
        if args.jobs is not None:
            config = config.with_workers(args.jobs)
    except ConfigurationError as e:
        print(f"配置错误: {e.message}", file=sys.stderr)
        return EXIT_SETUP_ERROR

    if args.web or args.input is None:
        from .web_server import run

        run(config, host=args.host, port=args.port)
        return EXIT_OK

    configure_logging(config.logging)
    try:
        with ImageCompressor(config) as compressor:
            settings = compressor.settings(
                compression_lvl=args.compression_lvl,
                output_format=args.output_format,
                png_quality=args.png_quality,
                oxipng=False if args.no_oxipng else None,
                png_lossy=False if args.no_png_lossy else None,
            )
            batch = compressor.compress_path(
                args.input,
                output_dir=args.output,
                settings=settings,
                overwrite=args.overwrite,
            )
    except ValidationError as e:
        print(f"错误: {e.message}", file=sys.stderr)
        return EXIT_SETUP_ERROR

    if batch.get_total_count() == 0:
        print("未找到支持的图片文件", file=sys.stderr)
        return EXIT_OK

    report(batch)
    return EXIT_OK if batch.all_succeeded else EXIT_FAILURES


if __name__ == "__main__":
    sys.exit(main())
