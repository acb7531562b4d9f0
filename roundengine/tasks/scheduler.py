# roundengine/tasks/scheduler.py
import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler

logger = logging.getLogger(__name__)

scheduler = AsyncIOScheduler()


def start_scheduler(cache, local_round=None):
    """
    启动调度器：
      - 轮次缓存过期检查（默认 60s）
      - 本地模拟轮次 tick（默认 100ms）
    """
    cache.start(scheduler)
    if local_round is not None:
        local_round.start(scheduler)

    if not scheduler.running:
        scheduler.start()
        logger.info("Scheduler started")


def stop_scheduler(cache, local_round=None):
    # 先摘任务再停调度器，避免计时器跨会话泄漏
    cache.stop()
    if local_round is not None:
        local_round.stop()
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")
