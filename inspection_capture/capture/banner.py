"""Auto-dismissing diagnostic notices shown to the technician."""

from __future__ import annotations

import asyncio
import itertools
from dataclasses import dataclass, field
from typing import Callable, Optional

from ..core.logging_utils import LoggerLike, ensure_structured_logger

BannerPresenter = Callable[[str, "BannerNotice"], None]


@dataclass(slots=True)
class BannerNotice:
    notice_id: int
    message: str
    handle: Optional[asyncio.TimerHandle] = field(default=None, repr=False)


class DiagnosticBanner:
    """Keeps the currently visible notices and dismisses each after ``duration``.

    ``presenter`` is called with ``("shown", notice)`` and
    ``("dismissed", notice)``; its failures are logged, never raised.
    """

    def __init__(
        self,
        duration: float = 15.0,
        *,
        presenter: Optional[BannerPresenter] = None,
        logger: LoggerLike = None,
    ) -> None:
        self.duration = duration
        self.presenter = presenter
        self.logger = ensure_structured_logger(logger, component="Banner", fallback_name="Banner")
        self._notices: dict[int, BannerNotice] = {}
        self._ids = itertools.count(1)

    @property
    def visible(self) -> list[BannerNotice]:
        return list(self._notices.values())

    def show(self, message: str) -> BannerNotice:
        notice = BannerNotice(next(self._ids), message)
        self._notices[notice.notice_id] = notice
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None
        if loop is not None and self.duration > 0:
            notice.handle = loop.call_later(self.duration, self.dismiss, notice.notice_id)
        self.logger.warning("Image upload notice: %s", message)
        self._present("shown", notice)
        return notice

    def dismiss(self, notice_id: int) -> bool:
        notice = self._notices.pop(notice_id, None)
        if notice is None:
            return False
        if notice.handle is not None:
            notice.handle.cancel()
            notice.handle = None
        self._present("dismissed", notice)
        return True

    def dismiss_all(self) -> None:
        for notice_id in list(self._notices):
            self.dismiss(notice_id)

    def _present(self, event: str, notice: BannerNotice) -> None:
        if self.presenter is None:
            return
        try:
            self.presenter(event, notice)
        except Exception:
            self.logger.exception("Banner presenter failed for %s notice %d", event, notice.notice_id)


__all__ = ["BannerNotice", "BannerPresenter", "DiagnosticBanner"]
