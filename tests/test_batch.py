"""并发执行器与批量处理器测试。"""

import threading
import time
from dataclasses import replace
from pathlib import Path

import pytest
from PIL import Image

from py_image_squeeze.core import PngOptimizer
from py_image_squeeze.engine import BatchProcessor, ConcurrentExecutor, JobBuilder
from py_image_squeeze.exceptions import ErrorHandler, ValidationError
from py_image_squeeze.models import (
    CompressionJob,
    CompressionSettings,
    DetectedFormat,
    ErrorKind,
    JobFailure,
    JobState,
    JobSuccess,
    OutputFormat,
)


def _make_jobs(count: int) -> list[CompressionJob]:
    builder = JobBuilder()
    return [builder.from_bytes(bytes([i]), f"{i}.png") for i in range(count)]


def _success(job: CompressionJob) -> JobSuccess:
    return JobSuccess(
        job_id=job.id,
        source_label=job.source.label,
        output_bytes=b"x",
        output_format=OutputFormat.PNG,
        detected_format=DetectedFormat.PNG,
        original_size=1,
        compressed_size=1,
    )


class TestConcurrentExecutor:
    """并发执行器测试"""

    def test_invalid_worker_count(self):
        with pytest.raises(ValueError):
            ConcurrentExecutor(max_workers=0)

    def test_empty_jobs(self):
        assert ConcurrentExecutor(max_workers=2).execute_jobs([], _success) == []

    def test_results_keep_submission_order(self):
        """完成顺序与提交顺序相反时结果仍按提交顺序排列"""
        jobs = _make_jobs(8)
        failing = jobs[3]

        def task(job: CompressionJob):
            index = jobs.index(job)
            time.sleep((len(jobs) - index) * 0.005)
            if job is failing:
                return ErrorHandler.create_failure(
                    job.id, job.source.label, ErrorKind.CODEC_DECODE_FAILED, "boom"
                )
            return _success(job)

        with ConcurrentExecutor(max_workers=4) as executor:
            batch_run = executor.run(jobs, task)
        results = batch_run.results

        assert [r.job_id for r in results] == [j.id for j in jobs]
        assert isinstance(results[3], JobFailure)
        assert results[3].error_kind == ErrorKind.CODEC_DECODE_FAILED
        assert all(r.success for i, r in enumerate(results) if i != 3)
        assert batch_run.states[failing.id] == JobState.FAILED
        assert batch_run.states[jobs[0].id] == JobState.SUCCEEDED

    def test_task_exception_becomes_failure(self):
        jobs = _make_jobs(3)

        def task(job: CompressionJob):
            if job is jobs[1]:
                raise RuntimeError("unexpected")
            return _success(job)

        results = ConcurrentExecutor(max_workers=2).execute_jobs(jobs, task)
        assert results[0].success and results[2].success
        assert isinstance(results[1], JobFailure)
        assert results[1].error_kind == ErrorKind.INTERNAL_IO

    def test_bounded_window(self):
        """未完成的提交数不超过 max_workers + queue_size"""
        jobs = _make_jobs(20)
        lock = threading.Lock()
        active = 0
        max_active = 0

        def task(job: CompressionJob):
            nonlocal active, max_active
            with lock:
                active += 1
                max_active = max(max_active, active)
            time.sleep(0.01)
            with lock:
                active -= 1
            return _success(job)

        executor = ConcurrentExecutor(max_workers=2, queue_size=1)
        with executor:
            batch_run = executor.run(jobs, task)

        assert len(batch_run.results) == 20
        assert executor.window_size == 3
        assert batch_run.peak_outstanding <= 3
        assert max_active <= 2

    def test_cancel_before_start(self):
        jobs = _make_jobs(4)
        cancel_event = threading.Event()
        cancel_event.set()

        results = ConcurrentExecutor(max_workers=2).execute_jobs(
            jobs, _success, cancel_event
        )
        assert all(r.error_kind == ErrorKind.CANCELLED for r in results)

    def test_cancel_stops_dispatch(self):
        """取消后已运行的任务完成，未派发的任务标记为取消"""
        jobs = _make_jobs(5)
        cancel_event = threading.Event()

        def task(job: CompressionJob):
            cancel_event.set()
            time.sleep(0.1)
            return _success(job)

        with ConcurrentExecutor(max_workers=1, queue_size=0) as executor:
            batch_run = executor.run(jobs, task, cancel_event)
        results = batch_run.results

        assert results[0].success
        assert all(
            isinstance(r, JobFailure) and r.error_kind == ErrorKind.CANCELLED
            for r in results[1:]
        )
        assert batch_run.states[jobs[0].id] == JobState.SUCCEEDED
        assert batch_run.states[jobs[4].id] == JobState.CANCELLED

    def test_cancel_withdraws_queued_jobs(self):
        """取消时已进入队列但未开始的任务不再执行"""
        jobs = _make_jobs(6)
        cancel_event = threading.Event()
        ran = []

        def task(job: CompressionJob):
            ran.append(job.source.filename)
            cancel_event.set()
            return _success(job)

        with ConcurrentExecutor(max_workers=1, queue_size=3) as executor:
            batch_run = executor.run(jobs, task, cancel_event)

        assert ran == ["0.png"]
        assert batch_run.results[0].success
        assert all(
            r.error_kind == ErrorKind.CANCELLED for r in batch_run.results[1:]
        )
        assert all(
            batch_run.states[job.id] == JobState.CANCELLED for job in jobs[1:]
        )

    def test_concurrent_batches_share_pool(self):
        """并发批次共享同一个工作池，各自的任务状态互不覆盖"""
        lock = threading.Lock()
        active = 0
        max_active = 0

        def task(job: CompressionJob):
            nonlocal active, max_active
            with lock:
                active += 1
                max_active = max(max_active, active)
            time.sleep(0.01)
            with lock:
                active -= 1
            return _success(job)

        batches = [_make_jobs(8), _make_jobs(8)]
        runs = {}

        with ConcurrentExecutor(max_workers=2, queue_size=2) as executor:

            def run_batch(index: int) -> None:
                runs[index] = executor.run(batches[index], task)

            threads = [
                threading.Thread(target=run_batch, args=(i,)) for i in range(2)
            ]
            for thread in threads:
                thread.start()
            for thread in threads:
                thread.join()

        assert max_active <= 2
        for index, jobs in enumerate(batches):
            assert set(runs[index].states) == {job.id for job in jobs}
            assert [r.job_id for r in runs[index].results] == [j.id for j in jobs]
            assert all(r.success for r in runs[index].results)

    def test_pool_is_reused_until_shutdown(self):
        executor = ConcurrentExecutor(max_workers=2)
        executor.execute_jobs(_make_jobs(2), _success)
        pool = executor._pool

        executor.execute_jobs(_make_jobs(2), _success)
        assert executor._pool is pool

        executor.shutdown()
        assert executor._pool is None


class TestBatchProcessor:
    """批量处理器测试"""

    @pytest.fixture
    def processor(self, app_config):
        with BatchProcessor(app_config) as processor:
            yield processor

    def test_run_jobs_empty(self, processor):
        batch = processor.run_jobs([])
        assert batch.get_total_count() == 0
        assert batch.all_succeeded

    def test_directory_to_output_dir(self, processor, image_tree, temp_dir):
        """递归处理并在输出目录中保持子目录结构"""
        out = temp_dir / "out"
        batch = processor.compress_path(image_tree, output_dir=out)

        assert batch.get_total_count() == 3
        assert batch.all_succeeded
        assert batch.source_root == image_tree.resolve()
        assert (out / "c_a.png").exists()
        assert (out / "c_b.jpg").exists()
        assert (out / "nested" / "c_c.png").exists()
        assert not (out / "node_modules").exists()
        for result in batch.get_successful_items():
            assert result.output_path is not None
            assert result.output_path.read_bytes() == result.output_bytes

    def test_written_next_to_source(self, processor, image_tree):
        settings = CompressionSettings(output_format=OutputFormat.WEBP)
        batch = processor.compress_path(image_tree / "a.png", settings=settings)

        assert batch.all_succeeded
        assert batch.source_root is None
        output = image_tree / "c_a.webp"
        assert output.exists()
        with Image.open(output) as img:
            assert img.format == "WEBP"

    def test_output_dir_inside_input_is_skipped(self, processor, image_tree):
        out = image_tree / "compressed"
        first = processor.compress_path(image_tree, output_dir=out)
        second = processor.compress_path(image_tree, output_dir=out)

        assert first.get_total_count() == 3
        assert second.get_total_count() == 3

    def test_overwrite_same_format(self, processor, image_tree):
        """同格式覆盖时原文件被替换，不留下备份或临时文件"""
        source = image_tree / "b.jpg"
        original_size = source.stat().st_size

        batch = processor.compress_path(source, overwrite=True)

        assert batch.all_succeeded
        assert batch.results[0].output_path == source.resolve()
        assert source.stat().st_size < original_size
        assert not (image_tree / "b.jpg.bak").exists()
        assert not (image_tree / "c_b.jpg").exists()

    def test_overwrite_with_new_format(self, processor, image_tree):
        """格式变化时写出新扩展名的文件，原文件保留"""
        source = image_tree / "a.png"
        settings = CompressionSettings(output_format=OutputFormat.WEBP)

        batch = processor.compress_path(source, settings=settings, overwrite=True)

        assert batch.all_succeeded
        assert (image_tree / "a.webp").exists()
        assert source.exists()

    def test_keeps_original_suffix_spelling(self, processor, temp_dir, photo_image):
        source = temp_dir / "photo.jpeg"
        photo_image.save(source, "JPEG", quality=95)

        batch = processor.compress_path(source)

        assert batch.results[0].output_path == (temp_dir / "c_photo.jpeg").resolve()

    def test_write_failure_is_internal_io(self, processor, image_tree, temp_dir):
        blocker = temp_dir / "blocker"
        blocker.write_text("occupied", encoding="utf-8")

        batch = processor.compress_path(image_tree / "a.png", output_dir=blocker)

        result = batch.results[0]
        assert isinstance(result, JobFailure)
        assert result.error_kind == ErrorKind.INTERNAL_IO

    def test_failed_job_does_not_stop_batch(self, processor, image_tree):
        (image_tree / "broken.png").write_bytes(b"\x89PNG\r\n\x1a\n" + b"\x00" * 32)

        batch = processor.compress_path(image_tree)

        assert batch.get_total_count() == 4
        assert batch.get_failure_count() == 1
        assert batch.get_failed_items()[0].source_label.endswith("broken.png")

    def test_empty_directory(self, processor, temp_dir):
        batch = processor.compress_path(temp_dir)
        assert batch.get_total_count() == 0

    def test_missing_input(self, processor, temp_dir):
        with pytest.raises(ValidationError) as exc_info:
            processor.compress_path(temp_dir / "missing")
        assert exc_info.value.field == "input"

    def test_cancelled_batch_writes_nothing(self, processor, image_tree, temp_dir):
        cancel_event = threading.Event()
        cancel_event.set()
        out = temp_dir / "out"

        batch = processor.compress_path(
            image_tree, output_dir=out, cancel_event=cancel_event
        )

        assert batch.get_failure_count() == 3
        assert not out.exists()

    def test_unsupported_single_file_is_skipped(self, processor, image_tree):
        batch = processor.compress_path(image_tree / "notes.txt")
        assert batch.get_total_count() == 0

    def test_write_requires_local_source(self, processor, png_bytes):
        job = JobBuilder().from_bytes(png_bytes, "photo.png")
        with pytest.raises(TypeError):
            processor._write_result(job, _success(job), None, None, False)

    @pytest.mark.parametrize("executor_type", ["thread", "process"])
    def test_restrict_to_root_in_every_executor(
        self, app_config, image_tree, executor_type
    ):
        """本地路径约束在线程池和进程池中一致生效"""
        config = replace(
            app_config,
            processing=replace(app_config.processing, EXECUTOR_TYPE=executor_type),
        )
        job = JobBuilder().from_path(image_tree / "a.png")

        with BatchProcessor(config, restrict_to_root=True) as processor:
            batch = processor.run_jobs([job])

        result = batch.results[0]
        assert isinstance(result, JobFailure)
        assert result.error_kind == ErrorKind.SOURCE_UNREACHABLE

    def test_process_pool(self, app_config, image_tree, temp_dir, png_bytes):
        """父进程已运行过 oxipng 后进程池仍能完成"""
        PngOptimizer().optimize(png_bytes)
        config = replace(
            app_config,
            processing=replace(app_config.processing, EXECUTOR_TYPE="process"),
        )
        out = temp_dir / "out"

        with BatchProcessor(config) as processor:
            batch = processor.compress_path(image_tree, output_dir=out)

        assert batch.all_succeeded
        assert sorted(p.name for p in Path(out).rglob("c_*")) == [
            "c_a.png",
            "c_b.jpg",
            "c_c.png",
        ]
