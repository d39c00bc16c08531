from __future__ import annotations

import asyncio
import os
import sys
import textwrap

import pytest

from focus_bgm.core.download_manager import (
    DownloadManager,
    classify_exit_code,
    parse_progress,
)
from focus_bgm.exceptions import (
    DownloadCancelledError,
    DownloadError,
    DownloadFailedError,
    DownloadFilesystemError,
    SourceBlockedError,
)

URL = "https://service/x"

# Stand-in for yt-dlp: prints progress lines (one of them out of order) and
# writes the output file named by the -o template.
_FAKE_DOWNLOADER = textwrap.dedent(
    """
    import sys
    import time

    args = sys.argv[1:]
    template = args[args.index("-o") + 1]
    for pct in ("10.0", "55.5", "30.0", "100"):
        print(f"[download]  {pct}% of 3.00MiB at 1.00MiB/s", flush=True)
    if "--fake-hang" in args:
        time.sleep(30)
    if "--fake-exit" in args:
        print("ERROR: something went wrong", flush=True)
        sys.exit(int(args[args.index("--fake-exit") + 1]))
    if "--fake-no-file" not in args:
        with open(template.replace("%(ext)s", "m4a"), "wb") as f:
            f.write(b"x" * 2048)
    """
)


def _manager(tmp_path, *extra_args: str, **kwargs) -> DownloadManager:
    script = tmp_path / "fake_downloader.py"
    script.write_text(_FAKE_DOWNLOADER, encoding="utf-8")
    return DownloadManager(
        0,
        tmp_path / "config",
        command=[sys.executable, str(script)],
        extra_args=extra_args,
        **kwargs,
    )


def test_parse_progress() -> None:
    assert parse_progress("[download]  45.2% of 3.00MiB at 1.2MiB/s") == 45.2
    assert parse_progress("[download] 100% of 3.00MiB") == 100.0
    assert parse_progress("[download] 120.0% of ~3.00MiB") == 100.0
    assert parse_progress("[download] Destination: song.webm") is None
    assert parse_progress("[ExtractAudio] Destination: song.m4a") is None


def test_classify_exit_code() -> None:
    assert isinstance(classify_exit_code(1), DownloadFailedError)
    blocked = classify_exit_code(2)
    assert isinstance(blocked, SourceBlockedError)
    assert "blocked" in str(blocked)
    assert isinstance(classify_exit_code(3), DownloadFilesystemError)

    other = classify_exit_code(7)
    assert type(other) is DownloadError
    assert str(other) == "Download failed (code: 7)"
    assert other.exit_code == 7


def test_build_args_keeps_extra_args_last(tmp_path) -> None:
    manager = DownloadManager(1, tmp_path, extra_args=["--cookies", "c.txt"])
    args = manager.build_args(URL, "/out/%(ext)s")
    assert args[:2] == ["yt-dlp", URL]
    assert args[args.index("-o") + 1] == "/out/%(ext)s"
    assert args[-2:] == ["--cookies", "c.txt"]
    assert manager.downloads_dir == tmp_path / "downloads-channel-1"


def test_successful_download_reports_monotonic_progress(tmp_path) -> None:
    manager = _manager(tmp_path)
    seen: list[float] = []

    result = asyncio.run(manager.download(URL, "My: Song/Name", seen.append))

    assert result.file_path.endswith("My__Song_Name.m4a")
    assert result.file_size == 2048
    assert os.path.dirname(result.file_path) == str(manager.downloads_dir)
    assert sorted(set(seen)) == [10.0, 55.5, 100.0]
    assert seen == sorted(seen)
    assert manager.active is False


def test_blocked_source_exit_code(tmp_path) -> None:
    manager = _manager(tmp_path, "--fake-exit", "2")
    with pytest.raises(SourceBlockedError) as excinfo:
        asyncio.run(manager.download(URL, "Song", lambda _: None))
    assert excinfo.value.exit_code == 2


def test_missing_output_file(tmp_path) -> None:
    manager = _manager(tmp_path, "--fake-no-file")
    with pytest.raises(DownloadError, match="Downloaded file not found"):
        asyncio.run(manager.download(URL, "Song", lambda _: None))


def test_launch_failure(tmp_path) -> None:
    manager = DownloadManager(0, tmp_path, command=[str(tmp_path / "no-such-binary")])
    with pytest.raises(DownloadError, match="Download error"):
        asyncio.run(manager.download(URL, "Song", lambda _: None))


def test_unwritable_download_dir(tmp_path) -> None:
    config_dir = tmp_path / "config"
    config_dir.write_text("not a directory", encoding="utf-8")
    manager = DownloadManager(0, config_dir, command=[sys.executable])
    with pytest.raises(DownloadError, match="Download error"):
        asyncio.run(manager.download(URL, "Song", lambda _: None))


@pytest.mark.skipif(os.name == "nt", reason="process groups are POSIX only")
def test_cancel_terminates_downloader(tmp_path) -> None:
    manager = _manager(tmp_path, "--fake-hang", progress_interval=0.05)
    seen: list[float] = []

    async def scenario() -> None:
        assert manager.cancel() is False
        task = asyncio.create_task(manager.download(URL, "Song", seen.append))

        loop = asyncio.get_running_loop()
        deadline = loop.time() + 10
        # wait until the last value is re-emitted during output silence
        while seen.count(100.0) < 2:
            assert loop.time() < deadline
            await asyncio.sleep(0.02)

        assert manager.cancel() is True
        with pytest.raises(DownloadCancelledError):
            await asyncio.wait_for(task, timeout=10)
        assert manager.active is False

    asyncio.run(scenario())


def test_delete_file_is_best_effort(tmp_path) -> None:
    manager = DownloadManager(0, tmp_path)
    target = tmp_path / "song.webm"
    target.write_bytes(b"x")
    manager.delete_file(str(target))
    assert not target.exists()
    manager.delete_file(str(target))
