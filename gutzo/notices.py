"""User-facing notices (what the storefront shows as toasts)."""
from dataclasses import dataclass
from enum import Enum
from typing import Callable

from gutzo.logging import get_logger

logger = get_logger(__name__)


class NoticeLevel(str, Enum):
    SUCCESS = "success"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True)
class Notice:
    level: NoticeLevel
    message: str


Notifier = Callable[[Notice], None]


def log_notifier(notice: Notice) -> None:
    """Default notifier for headless use: notices go to the log."""
    if notice.level in (NoticeLevel.WARNING, NoticeLevel.ERROR):
        logger.warning(f"[notice] {notice.message}")
    else:
        logger.info(f"[notice] {notice.message}")
