"""Tests for the debug_log module enable/disable functionality."""

import tempfile
from pathlib import Path
from unittest import mock

from cuesync import debug_log


class TestDebugLogEnableDisable:
    """Test the enable/disable functionality of debug logging."""

    def setup_method(self):
        """Reset debug log state before each test."""
        debug_log.disable()

    def test_disabled_by_default(self):
        """Debug logging should be disabled by default."""
        debug_log.disable()  # Reset to default state
        assert not debug_log.is_enabled()

    def test_enable(self):
        """enable() should turn on debug logging."""
        debug_log.enable()
        assert debug_log.is_enabled()
        debug_log.disable()

    def test_clear_logs_no_op_when_disabled(self):
        """clear_logs() should do nothing when logging is disabled."""
        with mock.patch.object(debug_log, '_ensure_log_dir') as mock_ensure:
            debug_log.clear_logs()
            mock_ensure.assert_not_called()

    def test_log_batch_no_op_when_disabled(self):
        """log_batch() should do nothing when logging is disabled."""
        with mock.patch.object(debug_log, '_ensure_log_dir') as mock_ensure:
            debug_log.log_batch(["hello", "world", "again"], True, "ACCEPT")
            mock_ensure.assert_not_called()

    def test_log_commit_no_op_when_disabled(self):
        """log_commit() should do nothing when logging is disabled."""
        with mock.patch.object(debug_log, '_ensure_log_dir') as mock_ensure:
            debug_log.log_commit(0, 7, 0, 0.9, "commit")
            mock_ensure.assert_not_called()

    def test_log_event_and_scroll_no_op_when_disabled(self):
        """log_event() and log_scroll() should do nothing when logging is disabled."""
        with mock.patch.object(debug_log, '_ensure_log_dir') as mock_ensure:
            debug_log.log_event("RESCUE", "enter")
            debug_log.log_scroll(1, 40.0, 0.5)
            mock_ensure.assert_not_called()


class TestDebugLogWriting:
    """With logging enabled, entries land in the right files."""

    def setup_method(self):
        debug_log.enable()

    def teardown_method(self):
        debug_log.disable()

    def test_writes_alignment_and_scroll_logs(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            log_dir = Path(tmpdir) / "logs"
            alignment_log = log_dir / "alignment.log"
            scroll_log = log_dir / "scroll.log"
            with mock.patch.object(debug_log, 'LOG_DIR', log_dir), \
                    mock.patch.object(debug_log, 'ALIGNMENT_LOG', alignment_log), \
                    mock.patch.object(debug_log, 'SCROLL_LOG', scroll_log):
                debug_log.clear_logs()
                debug_log.log_batch(["hello", "world", "again"], False, "ACCEPT")
                debug_log.log_commit(0, 7, 0, 0.912, "anchor")
                debug_log.log_event("RESCUE", "enter")
                debug_log.log_scroll(3, 40.0, 0.25)

            alignment = alignment_log.read_text(encoding='utf-8')
            scroll = scroll_log.read_text(encoding='utf-8')
            assert "=== New session started" in alignment
            assert "batch interim" in alignment
            assert "COMMIT anchor" in alignment
            assert "0 ->    7" in alignment
            assert "score=0.912" in alignment
            assert "RESCUE" in alignment
            assert "offset=    40.0" in scroll
            assert "ratio=0.250" in scroll
