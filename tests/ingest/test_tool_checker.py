"""Tests for tool availability checks."""

import pytest

from pack_ingest.common.errors import ToolNotFoundError
from pack_ingest.ingest import tool_checker
from pack_ingest.ingest.tool_checker import (
    check_tool_availability,
    get_installation_instructions,
    log_tool_status,
    require_tool,
)


class TestToolChecker:

    def test_check_tool_availability(self, monkeypatch):
        monkeypatch.setattr(tool_checker.shutil, "which", lambda name: "/usr/bin/ffmpeg" if name == "ffmpeg" else None)
        assert check_tool_availability() == {"ffmpeg": True, "ffprobe": False}

    def test_require_tool_missing(self, monkeypatch):
        monkeypatch.setattr(tool_checker.shutil, "which", lambda name: None)
        with pytest.raises(ToolNotFoundError) as exc_info:
            require_tool("ffprobe", "ffprobe")
        assert "brew install ffmpeg" in exc_info.value.message
        assert exc_info.value.context["tool"] == "ffprobe"

    def test_require_tool_present(self, monkeypatch):
        monkeypatch.setattr(tool_checker.shutil, "which", lambda name: "/usr/bin/ffmpeg")
        require_tool("ffmpeg", "ffmpeg")

    def test_log_tool_status_disabled(self, caplog):
        with caplog.at_level("INFO"):
            assert log_tool_status(enabled=False) == {"ffmpeg": False, "ffprobe": False}
        assert "Tool disabled" in caplog.text

    def test_log_tool_status_warns_when_missing(self, monkeypatch, caplog):
        monkeypatch.setattr(tool_checker.shutil, "which", lambda name: None)
        with caplog.at_level("WARNING"):
            log_tool_status()
        assert "Tool not found" in caplog.text

    def test_instructions(self):
        assert "ffmpeg.org" in get_installation_instructions("ffmpeg")
        assert get_installation_instructions("sox") == "Please install sox"
