"""Tests for transfer/progress.py: events, error collection, summaries."""

from trilium_sync.transfer.errors import ErrorCode, PerFileError
from trilium_sync.transfer.models import (
    FileResult,
    OperationContext,
    OperationKind,
    ProgressKind,
)
from trilium_sync.transfer.progress import (
    ErrorCollector,
    ProgressTracker,
    build_summary,
)


class TestProgressTracker:
    def test_events_carry_counts(self):
        events = []
        tracker = ProgressTracker("op-1", events.append)
        tracker.start(2)
        tracker.advance("a.md")
        tracker.advance("b.md")
        tracker.complete()

        assert [e.kind for e in events] == [
            ProgressKind.START,
            ProgressKind.PROGRESS,
            ProgressKind.PROGRESS,
            ProgressKind.COMPLETE,
        ]
        assert events[2].current == 2
        assert events[2].percentage == 100.0
        assert events[1].percentage == 50.0
        assert all(e.operation_id == "op-1" for e in events)

    def test_failing_callback_does_not_raise(self):
        def _broken(event):
            raise RuntimeError("ui gone")

        tracker = ProgressTracker("op-1", _broken)
        tracker.start(1)
        tracker.advance("a.md")
        assert tracker.current == 1

    def test_failed_item_is_one_error_event(self):
        events = []
        tracker = ProgressTracker("op-1", events.append)
        tracker.start(2)
        tracker.advance("a.md", failed=True)
        tracker.advance("b.md")

        assert [(e.kind, e.message, e.current) for e in events[1:]] == [
            (ProgressKind.ERROR, "a.md", 1),
            (ProgressKind.PROGRESS, "b.md", 2),
        ]
        assert tracker.current == 2

    def test_no_callback(self):
        tracker = ProgressTracker("op-1")
        tracker.start(0)
        tracker.complete()


class TestErrorCollector:
    def test_errors_and_warnings(self):
        collector = ErrorCollector()
        collector.add_error(ErrorCode.FILE_IMPORT_ERROR, "bad", path="a.md")
        collector.add_warning(ErrorCode.INDEX_ERROR, "no index")
        collector.add_exception(PerFileError("typed"), ErrorCode.IMPORT_ERROR, "b.md")
        collector.add_exception(OSError("disk"), ErrorCode.IMPORT_ERROR, "c.md")

        assert collector.has_errors
        assert [e.code for e in collector.errors] == [
            ErrorCode.FILE_IMPORT_ERROR,
            ErrorCode.FILE_IMPORT_ERROR,
            ErrorCode.IMPORT_ERROR,
        ]
        assert collector.errors[2].message == "disk"
        assert collector.warnings[0].code == ErrorCode.INDEX_ERROR

    def test_extend(self):
        a, b = ErrorCollector(), ErrorCollector()
        b.add_warning(ErrorCode.GIT_ERROR, "w")
        a.extend(b)
        assert len(a.warnings) == 1


class TestBuildSummary:
    def test_counts_keep_processed_invariant(self):
        context = OperationContext.create(OperationKind.IMPORT, "directory")
        results = [
            FileResult(path="a", success=True, size=3),
            FileResult(path="b", success=False),
            FileResult(path="c", success=True, skipped=True, size=7),
        ]
        summary = build_summary(
            context, results, ErrorCollector(), total_files=3, total_size=10
        )

        assert summary.successful_files == 1
        assert summary.failed_files == 1
        assert summary.skipped_files == 1
        assert summary.processed_files == 2
        assert summary.processed_size == 3
        assert summary.duration >= 0
        assert [r.path for r in summary.failed] == ["b"]
        assert [r.path for r in summary.skipped] == ["c"]

    def test_context_temp_directory_name(self, tmp_path):
        context = OperationContext.create(
            OperationKind.EXPORT, "obsidian", temp_root=str(tmp_path)
        )
        assert context.temp_directory.parent == tmp_path
        assert context.temp_directory.name.startswith("trilium-export-obsidian-")
