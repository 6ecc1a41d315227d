"""
Scheduled workflow execution — fires workflows from a clock instead of a message.
"""
from job_queue.scheduler import TaskScheduler

__all__ = ["TaskScheduler"]
