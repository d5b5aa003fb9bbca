"""Tests for CLI command wiring."""

import argparse
import tempfile
from pathlib import Path
from unittest.mock import patch

import pytest

from promptshelf import commands
from promptshelf.catalog.fetcher import CatalogFetcher
from promptshelf.catalog.models import Category
from promptshelf.config import Settings
from promptshelf.errors import HttpError
from promptshelf.ledger import DownloadLedger
from promptshelf.service import CatalogService
from promptshelf.sources import SourceRegistry

from conftest import FakeTransport, file_item, listing_url


def _parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="promptshelf")
    parser.add_argument("--root")
    commands.add_commands(parser.add_subparsers(dest="subcmd"))
    return parser


class TestParser:
    """Tests for argument parsing."""

    def test_category_aliases(self):
        """Test singular category names are accepted."""
        args = _parser().parse_args(["list", "prompt"])
        assert args.category is Category.PROMPTS

    def test_unknown_category(self):
        """Test an unknown category is an argparse error."""
        with pytest.raises(SystemExit):
            _parser().parse_args(["list", "chatmodes"])

    def test_no_command(self):
        """Test run_command returns -1 without a subcommand."""
        assert commands.run_command(_parser().parse_args([])) == -1


class TestCommands:
    """Tests for command execution against a fake catalog."""

    def test_list_and_download(self, acme):
        """Test listing a category and downloading one item."""
        transport = FakeTransport({
            listing_url(acme, "prompts"): [file_item("prompts/p.md")],
            "https://raw.example/prompts/p.md": b"# P",
        })
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            service = CatalogService(
                Settings(root_dir=str(root), pacing_s=0.0),
                SourceRegistry([acme]),
                CatalogFetcher(transport),
                DownloadLedger(),
            )
            with patch.object(commands, "_service", return_value=service):
                assert commands.run_command(_parser().parse_args(["list", "prompts"])) == 0
                assert commands.run_command(_parser().parse_args(["download", "prompts", "p.md", "--force"])) == 0
                assert commands.run_command(_parser().parse_args(["download", "prompts", "nope.md"])) == 1

            assert (root / "prompts" / "p.md").read_bytes() == b"# P"

    def test_sources_refresh(self, acme):
        """Test the refresh action refetches a source and fails on listing errors."""
        transport = FakeTransport({listing_url(acme, "prompts"): [file_item("prompts/p.md")]})
        with tempfile.TemporaryDirectory() as tmpdir:
            service = CatalogService(
                Settings(root_dir=tmpdir, pacing_s=0.0),
                SourceRegistry([acme]),
                CatalogFetcher(transport),
                DownloadLedger(),
            )
            with patch.object(commands, "_service", return_value=service):
                assert commands.run_command(_parser().parse_args(["sources", "refresh", "acme/kit"])) == 0
                assert service.cache.peek(acme, Category.PROMPTS).entries[0].name == "p.md"

                transport.routes[listing_url(acme, "agents")] = HttpError(503, "unavailable")
                assert commands.run_command(_parser().parse_args(["sources", "refresh", "acme/kit"])) == 1
