"""源码拉取器测试 - 缓存优先 / 校验和 / 并发与失败即停"""

from __future__ import annotations

import io
import tarfile
import threading
import time
from pathlib import Path

import pytest
from conftest import RecordingExecutor, make_pkg, make_tarball

from cpppm.core.dep.cache import CacheLayout
from cpppm.core.dep.fetcher import SourceFetcher, is_archive_url
from cpppm.core.exceptions import ChecksumError, FetchError, InstallCancelled, NetworkError


@pytest.fixture()
def layout(tmp_path: Path) -> CacheLayout:
    return CacheLayout(tmp_path / "cache")


def _fetcher(downloader, **kwargs) -> SourceFetcher:
    kwargs.setdefault("backoff", 0)
    return SourceFetcher(downloader=downloader, **kwargs)


class TestIsArchiveUrl:
    @pytest.mark.parametrize("url, expected", [
        ("https://x.org/fmt-10.2.1.tar.gz", True),
        ("https://x.org/zlib.tgz?raw=1", True),
        ("https://x.org/boost.tar.xz", True),
        ("https://x.org/json.zip", True),
        ("https://github.com/fmtlib/fmt", False),
        ("https://github.com/fmtlib/fmt.git#10.2.1", False),
    ])
    def test_detection(self, url, expected) -> None:
        assert is_archive_url(url) is expected


class TestFetchArchive:
    def test_download_and_unpack(self, archive_for, downloader, layout) -> None:
        pkg, sha = archive_for(make_pkg("fmt"), {"include/fmt/core.h": "// fmt", "CMakeLists.txt": ""})
        result = _fetcher(downloader).fetch(pkg, layout)

        assert result.cached is False
        assert result.source_dir.name == "fmt-1.0.0"
        assert (result.source_dir / "include" / "fmt" / "core.h").read_text() == "// fmt"
        assert downloader.calls == [pkg.source_url]
        assert layout.list_versions("fmt") == ["1.0.0"]

    def test_archive_without_single_root(self, tmp_path, downloader, layout) -> None:
        pkg = make_pkg("flat")
        archive = make_tarball(tmp_path / "flat.tar.gz", {"a.h": "", "b.h": ""})
        downloader.add(pkg.source_url, archive)
        result = _fetcher(downloader).fetch(pkg, layout)
        assert result.source_dir == layout.unpack_dir(pkg)

    def test_checksum_verified(self, archive_for, downloader, layout) -> None:
        pkg, sha = archive_for(make_pkg("zlib"))
        pkg = make_pkg("zlib", checksum=sha)
        assert _fetcher(downloader).fetch(pkg, layout).cached is False

    def test_checksum_mismatch(self, archive_for, downloader, layout) -> None:
        archive_for(make_pkg("zlib"))
        pkg = make_pkg("zlib", checksum="0" * 64)
        with pytest.raises(ChecksumError, match="校验和不匹配") as exc_info:
            _fetcher(downloader).fetch(pkg, layout)
        assert exc_info.value.name == "zlib"
        assert not (layout.version_dir(pkg) / "zlib-1.0.0.tar.gz").exists()
        assert layout.list_versions("zlib") == []

    def test_download_error_wrapped(self, downloader, layout) -> None:
        with pytest.raises(FetchError, match="下载失败") as exc_info:
            _fetcher(downloader).fetch(make_pkg("ghost"), layout)
        assert isinstance(exc_info.value.__cause__, NetworkError)

    def test_transient_download_error_retried(self, archive_for, downloader, layout) -> None:
        pkg, _ = archive_for(make_pkg("fmt"))
        attempts = []

        def flaky(url, dest, *, timeout):
            attempts.append(url)
            if len(attempts) == 1:
                raise NetworkError("connection reset")
            return downloader(url, dest, timeout=timeout)

        assert _fetcher(flaky, retries=1).fetch(pkg, layout).cached is False
        assert len(attempts) == 2

    def test_path_traversal_rejected(self, tmp_path, downloader, layout) -> None:
        pkg = make_pkg("evil")
        archive = tmp_path / "evil.tar.gz"
        with tarfile.open(archive, "w:gz") as tf:
            info = tarfile.TarInfo("../../outside.txt")
            info.size = 1
            tf.addfile(info, io.BytesIO(b"x"))
        downloader.add(pkg.source_url, archive)

        with pytest.raises(FetchError, match="解包失败"):
            _fetcher(downloader).fetch(pkg, layout)
        assert not (tmp_path / "outside.txt").exists()

    def test_cancelled_before_start(self, archive_for, downloader, layout) -> None:
        pkg, _ = archive_for(make_pkg("fmt"))
        cancel = threading.Event()
        cancel.set()
        with pytest.raises(InstallCancelled):
            _fetcher(downloader).fetch(pkg, layout, cancel)
        assert downloader.calls == []


class TestCache:
    def test_second_fetch_hits_cache(self, archive_for, downloader, layout) -> None:
        pkg, sha = archive_for(make_pkg("fmt"))
        pkg = make_pkg("fmt", checksum=sha)
        fetcher = _fetcher(downloader)
        first = fetcher.fetch(pkg, layout)
        second = fetcher.fetch(pkg, layout)

        assert second.cached is True
        assert second.source_dir == first.source_dir
        assert len(downloader.calls) == 1

    def test_cache_survives_new_fetcher(self, archive_for, downloader, layout) -> None:
        """缓存以磁盘戳文件为准，新实例同样命中"""
        pkg, _ = archive_for(make_pkg("fmt"))
        _fetcher(downloader).fetch(pkg, layout)
        assert _fetcher(downloader).fetch(pkg, layout).cached is True
        assert len(downloader.calls) == 1

    def test_new_version_is_cache_miss(self, tmp_path, archive_for, downloader, layout) -> None:
        v1, _ = archive_for(make_pkg("fmt", version="1.0.0"))
        v2, _ = archive_for(make_pkg("fmt", version="2.0.0"))
        fetcher = _fetcher(downloader)
        fetcher.fetch(v1, layout)
        assert fetcher.fetch(v2, layout).cached is False
        assert layout.list_versions("fmt") == ["1.0.0", "2.0.0"]

    def test_corrupted_archive_refetched(self, archive_for, downloader, layout) -> None:
        pkg, _ = archive_for(make_pkg("fmt"))
        fetcher = _fetcher(downloader)
        fetcher.fetch(pkg, layout)
        (layout.version_dir(pkg) / "fmt-1.0.0.tar.gz").write_bytes(b"tampered")

        assert fetcher.cached_source(pkg, layout) is None
        assert fetcher.fetch(pkg, layout).cached is False
        assert len(downloader.calls) == 2

    def test_corrupted_stamp_is_cache_miss(self, archive_for, downloader, layout) -> None:
        pkg, _ = archive_for(make_pkg("fmt"))
        fetcher = _fetcher(downloader)
        fetcher.fetch(pkg, layout)
        layout.stamp_path(pkg).write_text("source_url: [unclosed\n")

        assert fetcher.cached_source(pkg, layout) is None
        assert fetcher.fetch(pkg, layout).cached is False
        assert fetcher.fetch(pkg, layout).cached is True
        assert len(downloader.calls) == 2

    def test_changed_checksum_refetched(self, archive_for, downloader, layout) -> None:
        pkg, _ = archive_for(make_pkg("fmt"))
        fetcher = _fetcher(downloader)
        fetcher.fetch(pkg, layout)
        with pytest.raises(ChecksumError):
            fetcher.fetch(make_pkg("fmt", checksum="f" * 64), layout)
        assert len(downloader.calls) == 2


class TestFetchGit:
    def test_clone(self, layout) -> None:
        executor = RecordingExecutor()
        pkg = make_pkg("fmt", source_url="https://github.com/fmtlib/fmt.git#10.2.1")
        result = SourceFetcher(executor=executor, git_bin="git").fetch(pkg, layout)

        assert executor.commands == [[
            "git", "clone", "--depth", "1", "--branch", "10.2.1",
            "--", "https://github.com/fmtlib/fmt.git", str(layout.unpack_dir(pkg)),
        ]]
        assert result.source_dir == layout.unpack_dir(pkg)
        assert SourceFetcher(executor=executor).fetch(pkg, layout).cached is True
        assert len(executor.calls) == 1

    def test_url_never_read_as_option(self, layout) -> None:
        executor = RecordingExecutor()
        pkg = make_pkg("evil", source_url="--upload-pack=touch /tmp/pwned")
        SourceFetcher(executor=executor).fetch(pkg, layout)
        cmd = executor.commands[0]
        assert cmd.index("--") == cmd.index("--upload-pack=touch /tmp/pwned") - 1

    def test_clone_failure(self, layout) -> None:
        executor = RecordingExecutor(returncode=128, stderr="fatal: repository not found")
        pkg = make_pkg("ghost", source_url="https://github.com/example/ghost")
        with pytest.raises(FetchError, match="repository not found"):
            SourceFetcher(executor=executor).fetch(pkg, layout)
        assert layout.list_versions("ghost") == []


class TestFetchAll:
    def test_results_follow_input_order(self, archive_for, downloader, layout) -> None:
        pkgs = [archive_for(make_pkg(n))[0] for n in ("a", "b", "c", "d")]
        results = _fetcher(downloader, max_workers=4).fetch_all(pkgs, layout)
        assert [r.name for r in results] == ["a", "b", "c", "d"]

    def test_empty(self, downloader, layout) -> None:
        assert _fetcher(downloader).fetch_all([], layout) == []

    def test_concurrency_is_bounded(self, archive_for, downloader, layout) -> None:
        pkgs = [archive_for(make_pkg(f"p{i}"))[0] for i in range(8)]
        lock = threading.Lock()
        active = peak = 0

        def slow(url, dest, *, timeout):
            nonlocal active, peak
            with lock:
                active += 1
                peak = max(peak, active)
            time.sleep(0.05)
            with lock:
                active -= 1
            return downloader(url, dest, timeout=timeout)

        _fetcher(slow, max_workers=2).fetch_all(pkgs, layout)
        assert 1 <= peak <= 2

    def test_one_failure_fails_batch(self, archive_for, downloader, layout) -> None:
        ok, _ = archive_for(make_pkg("ok"))
        bad = make_pkg("bad")
        with pytest.raises(FetchError) as exc_info:
            _fetcher(downloader, max_workers=2).fetch_all([ok, bad], layout)
        assert exc_info.value.name == "bad"

    def test_pending_tasks_cancelled_after_failure(self, archive_for, downloader, layout) -> None:
        """单线程池中首个包失败后，后续未开始的任务不再执行"""
        bad = make_pkg("bad")
        rest = [archive_for(make_pkg(f"p{i}"))[0] for i in range(5)]
        gate = threading.Event()

        def gated(url, dest, *, timeout):
            if url != bad.source_url:
                gate.wait(1)
            return downloader(url, dest, timeout=timeout)

        with pytest.raises(FetchError):
            _fetcher(gated, max_workers=1).fetch_all([bad, *rest], layout)
        gate.set()
        assert downloader.calls[0] == bad.source_url
        assert len(downloader.calls) < 1 + len(rest)

    def test_interrupt_while_waiting_stops_batch(
        self, archive_for, downloader, layout, monkeypatch,
    ) -> None:
        """等待中收到 Ctrl-C: 置位取消信号，未开始的任务不再执行"""
        pkgs = [archive_for(make_pkg(f"p{i}"))[0] for i in range(12)]
        cancel = threading.Event()

        def slow(url, dest, *, timeout):
            time.sleep(0.05)
            return downloader(url, dest, timeout=timeout)

        def interrupted(*args, **kwargs):
            raise KeyboardInterrupt

        monkeypatch.setattr("cpppm.core.dep.fetcher.wait", interrupted)
        with pytest.raises(KeyboardInterrupt):
            _fetcher(slow, max_workers=2).fetch_all(pkgs, layout, cancel)
        assert cancel.is_set()
        assert len(downloader.calls) < len(pkgs)
