"""
APScheduler 调度后端 - 实现 core 层 ISchedulerBackend 接口
"""
import logging
from typing import Callable, Dict, List, Optional

from apscheduler.schedulers.background import BackgroundScheduler

from core.scheduler import ISchedulerBackend

logger = logging.getLogger(__name__)


class APSchedulerBackend(ISchedulerBackend):
    """基于 APScheduler 的调度后端"""

    def __init__(self, scheduler: Optional[BackgroundScheduler] = None):
        self._scheduler = scheduler if scheduler is not None else BackgroundScheduler(daemon=True)

    @property
    def scheduler(self) -> BackgroundScheduler:
        return self._scheduler

    def start(self) -> None:
        """启动调度器"""
        if not self._scheduler.running:
            self._scheduler.start()
            logger.info("APScheduler started")

    def shutdown(self) -> None:
        """关闭调度器"""
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
            logger.info("APScheduler shut down")

    def add_interval_job(self, job_id: str, func: Callable, seconds: float) -> None:
        """添加固定间隔任务（同一任务不重叠执行）"""
        self._scheduler.add_job(
            func,
            trigger="interval",
            seconds=seconds,
            id=job_id,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        logger.info(f"Job added: {job_id} (every {seconds}s)")

    def remove_job(self, job_id: str) -> None:
        """移除任务"""
        try:
            self._scheduler.remove_job(job_id)
            logger.info(f"Job removed: {job_id}")
        except Exception:
            logger.warning(f"Job not found for removal: {job_id}")

    def get_jobs(self) -> List[Dict]:
        """获取所有任务"""
        return [self._job_to_dict(j) for j in self._scheduler.get_jobs()]

    @staticmethod
    def _job_to_dict(job) -> Dict:
        next_run_time = getattr(job, "next_run_time", None)
        return {
            "id": job.id,
            "trigger": str(job.trigger),
            "next_run_time": next_run_time.isoformat() if next_run_time else None,
        }
