"""Long-running scheduler process."""

from dqscan.daemon.service import PIDFile, SchedulerDaemon, run_daemon

__all__ = ["PIDFile", "SchedulerDaemon", "run_daemon"]
