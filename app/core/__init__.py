"""
Core infrastructure: settings, payment exceptions and the status poll scheduler.
"""
from app.core.config import Settings, get_settings
from app.core.exceptions import PaymentError
from app.core.scheduler import setup_scheduler, start_scheduler, stop_scheduler, get_scheduler_status

__all__ = [
    "Settings",
    "get_settings",
    "PaymentError",
    "setup_scheduler",
    "start_scheduler",
    "stop_scheduler",
    "get_scheduler_status",
]
