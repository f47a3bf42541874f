"""Sequential, rate-limited analysis of many photos."""

import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Protocol

from loguru import logger

from ai_tagger.config import Settings
from ai_tagger.engine import DEFAULT_MIME_TYPE, SettingsSource
from ai_tagger.metadata import PhotoContext
from ai_tagger.models import AnalysisResult

ProgressCallback = Callable[[int, int], None]
MS_PER_SECOND = 1000


@dataclass(frozen=True)
class BatchItem:
    """
    One photo of a batch: encoded image plus optional metadata source.

    With a ``loader`` the image is encoded only when its turn comes, so a batch never holds
    more than one prepared image at a time.
    """

    file_name: str
    image_bytes: bytes = b""
    mime_type: str = DEFAULT_MIME_TYPE
    photo: PhotoContext | None = None
    loader: Callable[[], bytes] | None = None

    def read_image(self) -> bytes:
        if self.loader is not None:
            return self.loader()
        return self.image_bytes


class Analyzer(Protocol):
    def analyze(
        self,
        image_bytes: bytes,
        photo: PhotoContext | None = None,
        *,
        mime_type: str = DEFAULT_MIME_TYPE,
        file_name: str | None = None,
    ) -> AnalysisResult: ...


def iter_groups(count: int, size: int) -> list[range]:
    """
    Split ``count`` positions into consecutive groups of ``size``.

    Examples:
        >>> iter_groups(7, 5)
        [range(0, 5), range(5, 7)]

    """
    return [range(start, min(start + size, count)) for start in range(0, count, size)]


class BatchScheduler:
    """
    Run an analyzer over many photos, one at a time, pausing between requests.

    Args:
        engine: Anything with an ``analyze`` method, normally an AnalysisEngine
        settings: Settings (or a callable returning them) providing batch size and delay
        sleep: Pause function, replaceable in tests

    """

    def __init__(
        self,
        engine: Analyzer,
        settings: SettingsSource,
        *,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.engine = engine
        self._settings = settings
        self._sleep = sleep

    def current_settings(self) -> Settings:
        if isinstance(self._settings, Settings):
            return self._settings
        return self._settings()

    def _analyze_one(self, item: BatchItem, index: str) -> AnalysisResult:
        """Analyze one item; an unexpected error becomes a failed result."""
        with logger.contextualize(file=item.file_name):
            try:
                result = self.engine.analyze(
                    item.read_image(),
                    item.photo,
                    mime_type=item.mime_type,
                    file_name=item.file_name,
                )
            except Exception as exc:  # noqa: BLE001
                logger.exception("processing_exception", error=str(exc))
                return AnalysisResult.failure(str(exc) or type(exc).__name__)

            if result.status:
                logger.info("processing_success", index=index, keywords=len(result.keywords))
            else:
                logger.error("processing_failed", index=index, error=result.message)
            return result

    def analyze_batch(
        self,
        items: Sequence[BatchItem],
        progress_callback: ProgressCallback | None = None,
    ) -> list[AnalysisResult]:
        """
        Analyze every item in order.

        Items are taken in groups of ``batch_size``; after every photo except the last one the
        scheduler sleeps ``delay_between_requests_ms``. The callback receives
        ``(completed, total)`` after each photo, whatever its outcome.

        Returns:
            One result per item, in input order.

        """
        settings = self.current_settings()
        total = len(items)
        delay = settings.delay_between_requests_ms / MS_PER_SECOND
        logger.info(
            "batch_started",
            total=total,
            batch_size=settings.batch_size,
            delay_ms=settings.delay_between_requests_ms,
        )

        results: list[AnalysisResult] = []
        for group_number, group in enumerate(iter_groups(total, settings.batch_size), start=1):
            logger.debug("batch_group_started", group=group_number, size=len(group))
            for position in group:
                results.append(self._analyze_one(items[position], f"{position + 1}/{total}"))

                if progress_callback is not None:
                    progress_callback(position + 1, total)

                if position + 1 < total and delay > 0:
                    self._sleep(delay)

        successful = sum(1 for result in results if result.status)
        logger.info(
            "processing_summary",
            total_files=total,
            successful=successful,
            failed=total - successful,
        )
        return results
