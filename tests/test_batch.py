"""Tests for the sequential batch scheduler."""

from collections.abc import Callable

from ai_tagger.batch import BatchItem, BatchScheduler, iter_groups
from ai_tagger.config import Settings
from ai_tagger.metadata import PhotoContext
from ai_tagger.models import AnalysisResult

NO_DELAY = Settings(delay_between_requests_ms=0)


class _RecordingAnalyzer:
    """Analyzer stub: fails, raises or succeeds depending on the file name."""

    def __init__(self) -> None:
        self.calls: list[str] = []

    def analyze(
        self,
        image_bytes: bytes,
        photo: PhotoContext | None = None,
        *,
        mime_type: str = "image/jpeg",
        file_name: str | None = None,
    ) -> AnalysisResult:
        assert image_bytes
        assert photo is None
        assert mime_type == "image/jpeg"
        name = file_name or ""
        self.calls.append(name)
        if name.startswith("fail"):
            return AnalysisResult.failure("Unknown error")
        if name.startswith("crash"):
            msg = "decoder exploded"
            raise RuntimeError(msg)
        return AnalysisResult(status=True, title=name)


def _items(*names: str) -> list[BatchItem]:
    return [BatchItem(file_name=name, image_bytes=b"jpeg") for name in names]


def test_iter_groups_covers_every_position_once() -> None:
    """Groups are consecutive and the last one holds the remainder."""
    assert iter_groups(7, 5) == [range(5), range(5, 7)]
    assert iter_groups(0, 5) == []
    assert iter_groups(3, 1) == [range(1), range(1, 2), range(2, 3)]


def test_results_keep_input_order_and_failures_stay_in_place() -> None:
    """One result per item, positionally aligned, even when an item fails."""
    analyzer = _RecordingAnalyzer()
    scheduler = BatchScheduler(analyzer, NO_DELAY, sleep=lambda _: None)

    results = scheduler.analyze_batch(_items("a.jpg", "b.jpg", "fail.jpg", "d.jpg"))

    assert [r.status for r in results] == [True, True, False, True]
    assert results[0].title == "a.jpg"
    assert results[2].message == "Unknown error"
    assert results[3].title == "d.jpg"
    assert analyzer.calls == ["a.jpg", "b.jpg", "fail.jpg", "d.jpg"]


def test_sleeps_between_photos_but_not_after_the_last() -> None:
    """Seven photos in groups of five pause six times, for the configured delay."""
    sleeps: list[float] = []
    settings = Settings(batch_size=5, delay_between_requests_ms=1000)
    scheduler = BatchScheduler(_RecordingAnalyzer(), settings, sleep=sleeps.append)

    results = scheduler.analyze_batch(_items(*(f"{i}.jpg" for i in range(7))))

    assert len(results) == 7
    assert sleeps == [1.0] * 6


def test_zero_delay_never_sleeps() -> None:
    """A delay of zero disables the pause entirely."""
    sleeps: list[float] = []
    settings = Settings(delay_between_requests_ms=0)
    scheduler = BatchScheduler(_RecordingAnalyzer(), settings, sleep=sleeps.append)

    scheduler.analyze_batch(_items("a.jpg", "b.jpg"))

    assert sleeps == []


def test_progress_reported_after_every_photo() -> None:
    """The callback receives (completed, total) once per photo, failures included."""
    progress: list[tuple[int, int]] = []
    scheduler = BatchScheduler(
        _RecordingAnalyzer(),
        Settings(batch_size=2, delay_between_requests_ms=0),
        sleep=lambda _: None,
    )

    scheduler.analyze_batch(
        _items("a.jpg", "fail.jpg", "c.jpg"),
        progress_callback=lambda done, total: progress.append((done, total)),
    )

    assert progress == [(1, 3), (2, 3), (3, 3)]


def test_unexpected_exception_becomes_failed_result() -> None:
    """An error raised while analyzing one photo does not stop the batch."""
    analyzer = _RecordingAnalyzer()
    scheduler = BatchScheduler(analyzer, NO_DELAY, sleep=lambda _: None)

    results = scheduler.analyze_batch(_items("crash.jpg", "b.jpg"))

    assert results[0].status is False
    assert results[0].message == "decoder exploded"
    assert results[1].status is True
    assert analyzer.calls == ["crash.jpg", "b.jpg"]


def test_empty_batch_returns_empty_list() -> None:
    """No items, no calls, no pauses."""
    sleeps: list[float] = []
    scheduler = BatchScheduler(_RecordingAnalyzer(), Settings(), sleep=sleeps.append)

    assert scheduler.analyze_batch([]) == []
    assert sleeps == []


def test_loader_runs_just_before_each_analysis() -> None:
    """Lazy items are encoded one at a time, right before their own request."""
    events: list[str] = []

    class _LoggingAnalyzer(_RecordingAnalyzer):
        def analyze(
            self,
            image_bytes: bytes,
            photo: PhotoContext | None = None,
            *,
            mime_type: str = "image/jpeg",
            file_name: str | None = None,
        ) -> AnalysisResult:
            events.append(f"analyze {file_name}")
            return super().analyze(image_bytes, photo, mime_type=mime_type, file_name=file_name)

    def loader(name: str) -> Callable[[], bytes]:
        def load() -> bytes:
            events.append(f"load {name}")
            return b"jpeg"

        return load

    items = [BatchItem(file_name=name, loader=loader(name)) for name in ("a.jpg", "b.jpg")]
    scheduler = BatchScheduler(_LoggingAnalyzer(), NO_DELAY, sleep=lambda _: None)

    results = scheduler.analyze_batch(items)

    assert [r.status for r in results] == [True, True]
    assert events == ["load a.jpg", "analyze a.jpg", "load b.jpg", "analyze b.jpg"]


def test_loader_error_fails_only_that_photo() -> None:
    """An image that cannot be loaded becomes a failed result; the batch goes on."""

    def broken() -> bytes:
        msg = "truncated file"
        raise OSError(msg)

    items = [BatchItem(file_name="a.jpg", loader=broken), *_items("b.jpg")]
    scheduler = BatchScheduler(_RecordingAnalyzer(), NO_DELAY, sleep=lambda _: None)

    results = scheduler.analyze_batch(items)

    assert results[0].status is False
    assert results[0].message == "truncated file"
    assert results[1].status is True
