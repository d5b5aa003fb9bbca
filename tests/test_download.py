"""Tests for BundleDownloader."""

import tempfile
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from promptshelf.catalog.fetcher import CatalogFetcher
from promptshelf.catalog.models import CatalogEntry, Category
from promptshelf.download import (
    BundleDownloader,
    CancellationToken,
    DownloadAborted,
    FailureKind,
    OverwriteDecision,
    classify_failure,
    never_overwrite,
    safe_join,
)
from promptshelf.errors import FilesystemError, HttpError, NetworkError, TooDeep
from promptshelf.ledger import DownloadLedger
from promptshelf.manifest import (
    CollectionItemRef,
    CollectionManifest,
    ResolvedDownloadPlan,
    ResolvedItem,
    UnresolvedItem,
)

from conftest import FakeTransport, file_item, listing_url

RAW = "https://raw.example"


def _file(source, category: str, name: str, sha: str = "sha1") -> CatalogEntry:
    return CatalogEntry(
        name=name,
        path=f"{category}/{name}",
        kind="file",
        size=10,
        remote_ref=sha,
        fetch_locator=f"{RAW}/{category}/{name}",
        source_id=source.id,
    )


def _skill(source, name: str) -> CatalogEntry:
    return CatalogEntry(name=name, path=f"skills/{name}", kind="dir", remote_ref="tree", source_id=source.id)


def _plan(*items) -> ResolvedDownloadPlan:
    manifest = CollectionManifest(id="c1", name="Kit", description="d")
    return ResolvedDownloadPlan(manifest=manifest, items=list(items))


def _resolved(source, entry: CatalogEntry, category: Category) -> ResolvedItem:
    return ResolvedItem(ref=CollectionItemRef(entry.path, "x"), entry=entry, category=category, source=source)


def _downloader(transport, ledger=None, **kwargs) -> BundleDownloader:
    kwargs.setdefault("pacing_s", 0)
    return BundleDownloader(CatalogFetcher(transport), ledger, **kwargs)


class TestSafeJoin:
    """Tests for safe_join."""

    def test_inside(self):
        """Test ordinary relative paths stay under the root."""
        root = Path("/tmp/root")
        assert safe_join(root, "a/b.md") == Path("/tmp/root/a/b.md")
        assert safe_join(root, "a/../b.md") == Path("/tmp/root/b.md")

    @pytest.mark.parametrize("relative", ["../../etc/passwd", "../x", "/etc/passwd", "a/../../x", "", ".", "./", "C:/x", "..\\x"])
    def test_escapes_rejected(self, relative):
        """Test any path leaving the root is refused."""
        with pytest.raises(FilesystemError):
            safe_join(Path("/tmp/root"), relative)


class TestDownloadEntry:
    """Tests for single-entry downloads."""

    @pytest.mark.asyncio
    async def test_file(self, acme):
        """Test a file lands in its category folder and is recorded."""
        entry = _file(acme, "prompts", "p.prompt.md")
        transport = FakeTransport({entry.fetch_locator: b"# prompt"})
        ledger = DownloadLedger()
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            done = await _downloader(transport, ledger).download_entry(entry, Category.PROMPTS, acme, root)

            target = root / "prompts" / "p.prompt.md"
            assert done.paths == [target]
            assert target.read_bytes() == b"# prompt"

        record = ledger.get(entry.item_id)
        assert record.remote_ref == "sha1"
        assert record.size == 10
        assert record.category == "prompts"

    @pytest.mark.asyncio
    async def test_skill_folder(self, acme):
        """Test skill files keep their structure under the skill folder."""
        entry = _skill(acme, "storybook")
        transport = FakeTransport({
            listing_url(acme, "skills/storybook"): [
                file_item("skills/storybook/SKILL.md"),
                {"type": "dir", "name": "refs", "path": "skills/storybook/refs"},
            ],
            listing_url(acme, "skills/storybook/refs"): [file_item("skills/storybook/refs/guide.md")],
            f"{RAW}/skills/storybook/SKILL.md": b"skill",
            f"{RAW}/skills/storybook/refs/guide.md": b"guide",
        })
        ledger = DownloadLedger()
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            done = await _downloader(transport, ledger).download_entry(entry, Category.SKILLS, acme, root)

            skill_dir = root / "skills" / "storybook"
            assert (skill_dir / "SKILL.md").read_bytes() == b"skill"
            assert (skill_dir / "refs" / "guide.md").read_bytes() == b"guide"
            assert len(done.paths) == 2

        assert len(ledger) == 1
        assert ledger.get(entry.item_id).remote_ref == "tree"

    @pytest.mark.asyncio
    async def test_traversal_writes_nothing(self, acme):
        """Test a listing entry escaping the skill folder fails before any write."""
        entry = _skill(acme, "evil")
        transport = FakeTransport({
            listing_url(acme, "skills/evil"): [
                file_item("skills/evil/ok.md"),
                file_item("../../etc/passwd"),
            ],
            f"{RAW}/skills/evil/ok.md": b"ok",
            f"{RAW}/../../etc/passwd": b"root:x",
        })
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            with pytest.raises(FilesystemError):
                await _downloader(transport).download_entry(entry, Category.SKILLS, acme, root)
            assert list(root.rglob("*")) == []
        assert not any(url.startswith(RAW) for url in transport.urls())

    @pytest.mark.asyncio
    async def test_overwrite_skip_and_abort(self, acme):
        """Test the overwrite policy is consulted for existing targets."""
        entry = _file(acme, "agents", "a.agent.md")
        transport = FakeTransport({entry.fetch_locator: b"new"})
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            target = root / "agents" / "a.agent.md"
            target.parent.mkdir(parents=True)
            target.write_bytes(b"old")

            downloader = _downloader(transport)
            assert await downloader.download_entry(entry, Category.AGENTS, acme, root, never_overwrite) is None
            assert target.read_bytes() == b"old"

            with pytest.raises(DownloadAborted):
                await downloader.download_entry(entry, Category.AGENTS, acme, root, lambda p: OverwriteDecision.ABORT)

            seen = []

            def overwrite(path):
                seen.append(path)
                return OverwriteDecision.OVERWRITE

            await downloader.download_entry(entry, Category.AGENTS, acme, root, overwrite)
            assert seen == [target]
            assert target.read_bytes() == b"new"


class TestDownloadPlan:
    """Tests for bundle downloads."""

    @pytest.mark.asyncio
    async def test_failures_do_not_stop_siblings(self, acme):
        """Test each failure is classified and the rest still download."""
        good = _file(acme, "prompts", "good.md")
        gone = _file(acme, "prompts", "gone.md")
        flaky = _file(acme, "prompts", "flaky.md")
        denied = _file(acme, "prompts", "denied.md")
        transport = FakeTransport({
            good.fetch_locator: b"good",
            flaky.fetch_locator: NetworkError("timed out"),
            denied.fetch_locator: HttpError(403, "HTTP 403"),
        })
        plan = _plan(
            _resolved(acme, gone, Category.PROMPTS),
            UnresolvedItem(CollectionItemRef("prompts/nowhere.md", "prompt"), "not found"),
            _resolved(acme, flaky, Category.PROMPTS),
            _resolved(acme, denied, Category.PROMPTS),
            _resolved(acme, good, Category.PROMPTS),
        )
        with tempfile.TemporaryDirectory() as tmpdir:
            summary = await _downloader(transport).download_plan(plan, Path(tmpdir))

        assert [item.entry.name for item in summary.succeeded] == ["good.md"]
        assert [(f.label, f.kind, f.status_code) for f in summary.failed] == [
            ("gone.md", FailureKind.NOT_FOUND, 404),
            ("prompts/nowhere.md", FailureKind.NOT_FOUND, None),
            ("flaky.md", FailureKind.NETWORK_ERROR, None),
            ("denied.md", FailureKind.HTTP_ERROR, 403),
        ]
        assert summary.ok is False

    @pytest.mark.asyncio
    async def test_dot_entry_in_skill_fails_only_that_item(self, acme):
        """Test a skill listing entry naming the folder itself fails only that skill."""
        skill = _skill(acme, "evil")
        prompt = _file(acme, "prompts", "a.md")
        transport = FakeTransport({
            listing_url(acme, "skills/evil"): [{"type": "file", "name": ".", "path": "skills/evil/.",
                                                "download_url": f"{RAW}/skills/evil/."}],
            prompt.fetch_locator: b"# A",
        })
        plan = _plan(_resolved(acme, skill, Category.SKILLS), _resolved(acme, prompt, Category.PROMPTS))
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            summary = await _downloader(transport).download_plan(plan, root)
            assert (root / "prompts" / "a.md").read_bytes() == b"# A"
            assert not (root / "skills").exists()

        assert [f.kind for f in summary.failed] == [FailureKind.FILESYSTEM_ERROR]
        assert [item.entry.name for item in summary.succeeded] == ["a.md"]

    @pytest.mark.asyncio
    async def test_pacing_between_started_items(self, acme):
        """Test the pacing delay runs between downloads, not before the first."""
        entries = [_file(acme, "prompts", f"{n}.md") for n in ("a", "b", "c")]
        transport = FakeTransport({e.fetch_locator: b"x" for e in entries})
        sleep = AsyncMock()
        downloader = _downloader(transport, pacing_s=0.5, sleep=sleep)
        plan = _plan(*(_resolved(acme, e, Category.PROMPTS) for e in entries))

        with tempfile.TemporaryDirectory() as tmpdir:
            await downloader.download_plan(plan, Path(tmpdir))
        assert sleep.await_count == 2
        sleep.assert_awaited_with(0.5)

    @pytest.mark.asyncio
    async def test_zero_pacing(self, acme):
        """Test pacing can be switched off."""
        entries = [_file(acme, "prompts", f"{n}.md") for n in ("a", "b")]
        transport = FakeTransport({e.fetch_locator: b"x" for e in entries})
        sleep = AsyncMock()
        plan = _plan(*(_resolved(acme, e, Category.PROMPTS) for e in entries))
        with tempfile.TemporaryDirectory() as tmpdir:
            await _downloader(transport, pacing_s=0, sleep=sleep).download_plan(plan, Path(tmpdir))
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_cancellation_between_items(self, acme):
        """Test cancelling stops before the next item and reports the rest."""
        entries = [_file(acme, "prompts", f"{n}.md") for n in ("a", "b", "c")]
        transport = FakeTransport({e.fetch_locator: b"x" for e in entries})
        token = CancellationToken()

        def progress(event):
            if event.stage == "done":
                token.cancel()

        plan = _plan(*(_resolved(acme, e, Category.PROMPTS) for e in entries))
        with tempfile.TemporaryDirectory() as tmpdir:
            summary = await _downloader(transport).download_plan(plan, Path(tmpdir), progress=progress, cancel=token)

        assert [item.entry.name for item in summary.succeeded] == ["a.md"]
        assert len(summary.not_started) == 2
        assert summary.cancelled is True

    @pytest.mark.asyncio
    async def test_abort_policy_stops_bundle(self, acme):
        """Test an abort answer ends the bundle and keeps existing files."""
        first = _file(acme, "prompts", "a.md")
        second = _file(acme, "prompts", "b.md")
        transport = FakeTransport({first.fetch_locator: b"new", second.fetch_locator: b"new"})
        plan = _plan(_resolved(acme, first, Category.PROMPTS), _resolved(acme, second, Category.PROMPTS))
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            (root / "prompts").mkdir()
            (root / "prompts" / "a.md").write_bytes(b"old")

            summary = await _downloader(transport).download_plan(
                plan, root, overwrite=lambda p: OverwriteDecision.ABORT
            )
            assert (root / "prompts" / "a.md").read_bytes() == b"old"
            assert not (root / "prompts" / "b.md").exists()

        assert summary.cancelled is True
        assert len(summary.not_started) == 2
        assert summary.failed == []

    @pytest.mark.asyncio
    async def test_skipped_items(self, acme):
        """Test skipped files are reported separately."""
        entry = _file(acme, "prompts", "a.md")
        transport = FakeTransport({entry.fetch_locator: b"new"})
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            (root / "prompts").mkdir()
            (root / "prompts" / "a.md").write_bytes(b"old")
            summary = await _downloader(transport).download_plan(
                _plan(_resolved(acme, entry, Category.PROMPTS)), root, overwrite=never_overwrite
            )
        assert [s.entry.name for s in summary.skipped] == ["a.md"]
        assert summary.ok is True


class TestClassifyFailure:
    """Tests for classify_failure."""

    def test_kinds(self):
        """Test each error maps to its failure kind."""
        assert classify_failure(HttpError(404)) == (FailureKind.NOT_FOUND, 404)
        assert classify_failure(HttpError(502)) == (FailureKind.HTTP_ERROR, 502)
        assert classify_failure(NetworkError("timeout")) == (FailureKind.NETWORK_ERROR, None)
        assert classify_failure(TooDeep("skills/x", 32)) == (FailureKind.TOO_DEEP, None)
        assert classify_failure(FilesystemError("disk full")) == (FailureKind.FILESYSTEM_ERROR, None)
        assert classify_failure(OSError("denied")) == (FailureKind.FILESYSTEM_ERROR, None)
