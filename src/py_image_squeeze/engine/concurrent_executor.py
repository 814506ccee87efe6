"""并发执行器模块。

固定大小的常驻工作池 + 每批次独立的有界提交窗口 + 按提交序号写入的结果槽位。
取消只停止派发新任务，已在执行的任务照常完成，排队中的任务被撤回。
"""

import multiprocessing
import threading
from collections.abc import Callable, Sequence
from concurrent.futures import (
    FIRST_COMPLETED,
    CancelledError,
    Executor,
    Future,
    ProcessPoolExecutor,
    ThreadPoolExecutor,
    wait,
)
from functools import partial

from ..exceptions import ErrorHandler
from ..models.compression_config import CompressionJob
from ..models.compression_result import JobResult, JobState
from ..utils.logging_helpers import get_logger


logger = get_logger()

# 等待提交窗口或结果时检查取消信号的间隔（秒）
_POLL_INTERVAL = 0.05


def _skip_if_cancelled(
    task_function: Callable[[CompressionJob], JobResult],
    cancel_event: threading.Event,
    job: CompressionJob,
) -> JobResult:
    """线程池任务开始前检查取消信号"""
    if cancel_event.is_set():
        raise CancelledError
    return task_function(job)


class BatchRun:
    """单个批次的执行状态

    每次 execute_jobs 独立创建，多个批次共享同一个工作池时互不干扰。
    """

    def __init__(
        self,
        jobs: Sequence[CompressionJob],
        window_size: int,
        cancel_event: threading.Event | None = None,
    ):
        self.jobs = jobs
        self.slots: list[JobResult | None] = [None] * len(jobs)
        self.states: dict[str, JobState] = {job.id: JobState.PENDING for job in jobs}
        self.cancel_event = cancel_event or threading.Event()
        self.futures: dict[Future[JobResult], int] = {}
        self.peak_outstanding = 0

        self._window = threading.BoundedSemaphore(window_size)
        self._outstanding = 0
        self._lock = threading.Lock()

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    @property
    def results(self) -> list[JobResult]:
        return [result for result in self.slots if result is not None]

    def admit(self) -> bool:
        """等待提交窗口，取消时返回 False"""
        while not self.cancelled:
            if self._window.acquire(timeout=_POLL_INTERVAL):
                with self._lock:
                    self._outstanding += 1
                    self.peak_outstanding = max(
                        self.peak_outstanding, self._outstanding
                    )
                return True
        return False

    def release(self) -> None:
        with self._lock:
            self._outstanding -= 1
        self._window.release()

    def track(self, future: Future[JobResult], index: int) -> None:
        with self._lock:
            self.futures[future] = index
        self.states[self.jobs[index].id] = JobState.RUNNING
        future.add_done_callback(self._on_done)

    def _on_done(self, future: Future[JobResult]) -> None:
        self.release()
        # 在工作线程取下一个任务之前撤回排队中的任务
        if not future.cancelled() and self.cancelled:
            self.cancel_pending()

    def cancel_pending(self) -> None:
        """撤回尚未开始执行的任务"""
        with self._lock:
            pending = list(self.futures)
        withdrawn = sum(
            1 for future in pending if not future.done() and future.cancel()
        )
        if withdrawn:
            logger.info(f"批次已取消，撤回 {withdrawn} 个排队中的任务")

    def record(self, future: Future[JobResult]) -> None:
        """把已完成 future 的结果写入对应槽位"""
        index = self.futures[future]
        job = self.jobs[index]

        try:
            result = future.result()
        except CancelledError:
            self.states[job.id] = JobState.CANCELLED
            self.slots[index] = ErrorHandler.cancelled(job)
            return
        except Exception as e:
            result = ErrorHandler.to_failure(e, job, "并发任务处理")

        self.slots[index] = result
        if result.success:
            self.states[job.id] = JobState.SUCCEEDED
            logger.debug(f"处理成功: {job.source.label}")
        else:
            self.states[job.id] = JobState.FAILED
            logger.debug(f"处理失败: {job.source.label}")

    def fill_undispatched(self) -> None:
        """从未派发的任务标记为取消"""
        for index, job in enumerate(self.jobs):
            if self.slots[index] is None:
                self.states[job.id] = JobState.CANCELLED
                self.slots[index] = ErrorHandler.cancelled(job)


class ConcurrentExecutor:
    """通用并发执行器

    工作池在首次使用时创建并常驻，所有批次共享，池大小即进程内的并发上限。
    用完后调用 shutdown()，或作为上下文管理器使用。

    Args:
        max_workers: 工作线程/进程数
        queue_size: 每个批次除正在执行的任务外，允许排队的任务数
        executor_type: 'thread' 或 'process'
    """

    def __init__(
        self,
        max_workers: int = 4,
        queue_size: int | None = None,
        executor_type: str = "thread",
    ):
        if max_workers <= 0:
            raise ValueError(f"max_workers 必须大于 0，得到: {max_workers}")
        self.max_workers = max_workers
        self.queue_size = queue_size if queue_size is not None else 2 * max_workers
        self.executor_type = executor_type

        self._pool: Executor | None = None
        self._pool_lock = threading.Lock()

    def __enter__(self) -> "ConcurrentExecutor":
        return self

    def __exit__(self, *exc_info) -> None:
        self.shutdown()

    @property
    def window_size(self) -> int:
        """单个批次最多同时未完成的提交数"""
        return self.max_workers + self.queue_size

    def execute_jobs(
        self,
        jobs: Sequence[CompressionJob],
        task_function: Callable[[CompressionJob], JobResult],
        cancel_event: threading.Event | None = None,
    ) -> list[JobResult]:
        """执行并发任务

        Args:
            jobs: 任务列表
            task_function: 任务函数，进程池模式下必须可 pickle
            cancel_event: 取消信号

        Returns:
            list[JobResult]: 与 jobs 一一对应、顺序一致的结果
        """
        return self.run(jobs, task_function, cancel_event).results

    def run(
        self,
        jobs: Sequence[CompressionJob],
        task_function: Callable[[CompressionJob], JobResult],
        cancel_event: threading.Event | None = None,
    ) -> BatchRun:
        """执行并发任务，返回包含结果与任务状态的批次记录"""
        batch_run = BatchRun(jobs, self.window_size, cancel_event)
        if not jobs:
            return batch_run

        pool = self._get_pool()
        self._submit_jobs(pool, batch_run, task_function)
        self._collect_results(batch_run)
        batch_run.fill_undispatched()
        return batch_run

    def shutdown(self) -> None:
        """关闭工作池，等待正在执行的任务完成"""
        with self._pool_lock:
            pool, self._pool = self._pool, None
        if pool is not None:
            pool.shutdown(wait=True)
            logger.debug("工作池已关闭")

    def _submit_jobs(
        self,
        pool: Executor,
        batch_run: BatchRun,
        task_function: Callable[[CompressionJob], JobResult],
    ) -> None:
        """按顺序提交任务，提交窗口满时阻塞"""
        jobs = batch_run.jobs
        if self.executor_type == "thread":
            task_function = partial(
                _skip_if_cancelled, task_function, batch_run.cancel_event
            )

        for index, job in enumerate(jobs):
            if not batch_run.admit():
                logger.info(f"批次已取消，停止派发（已派发 {index}/{len(jobs)}）")
                break

            try:
                future = pool.submit(task_function, job)
            except Exception as e:
                batch_run.release()
                batch_run.slots[index] = ErrorHandler.to_failure(e, job, "任务提交")
                batch_run.states[job.id] = JobState.FAILED
                continue

            batch_run.track(future, index)

        if batch_run.cancelled:
            batch_run.cancel_pending()

    def _collect_results(self, batch_run: BatchRun) -> None:
        """收集任务执行结果，期间响应取消信号"""
        pending = set(batch_run.futures)
        while pending:
            done, pending = wait(
                pending, timeout=_POLL_INTERVAL, return_when=FIRST_COMPLETED
            )
            if batch_run.cancelled:
                batch_run.cancel_pending()
            for future in done:
                batch_run.record(future)

    def _get_pool(self) -> Executor:
        """获取常驻工作池，首次调用时创建"""
        with self._pool_lock:
            if self._pool is None:
                self._pool = self._create_pool()
            return self._pool

    def _create_pool(self) -> Executor:
        """根据配置创建工作池"""
        if self.executor_type == "process":
            logger.debug(f"使用ProcessPoolExecutor: 工作进程={self.max_workers}")
            # oxipng 的原生线程池在 fork 后的子进程中会死锁
            return ProcessPoolExecutor(
                max_workers=self.max_workers,
                mp_context=multiprocessing.get_context("spawn"),
            )

        logger.debug(f"使用ThreadPoolExecutor: 工作线程={self.max_workers}")
        return ThreadPoolExecutor(max_workers=self.max_workers)
