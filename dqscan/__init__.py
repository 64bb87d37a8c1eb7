"""dqscan - scheduled execution core for data-quality scans."""

__app_name__ = "dqscan"
__version__ = "0.1.0"
