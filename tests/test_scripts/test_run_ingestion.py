"""Tests for the run_ingestion CLI entry point."""

from __future__ import annotations

from datetime import date
from unittest.mock import AsyncMock, patch

from options_pipeline.core.enums import CycleState
from options_pipeline.ingestion.errors import FetchFailure
from options_pipeline.pipeline import CycleResult
from scripts.run_ingestion import main, parse_args


class TestParseArgs:
    def test_defaults(self) -> None:
        args = parse_args([])
        assert args.expiry is None
        assert args.force is False
        assert args.dry_run is False
        assert args.strategy is None

    def test_all_flags(self) -> None:
        args = parse_args(
            ["--symbol", "XYZ", "--expiry", "2025-06-20", "--force", "--dry-run", "--strategy", "staged"]
        )
        assert args.symbol == "XYZ"
        assert args.expiry == date(2025, 6, 20)
        assert args.force is True
        assert args.dry_run is True
        assert args.strategy == "staged"


def _patched_cycle(run: AsyncMock):
    return patch("scripts.run_ingestion.OptionsIngestionCycle", return_value=AsyncMock(run=run))


@patch("scripts.run_ingestion.configure_logging")
def test_main_returns_zero_on_done(_logging, capsys) -> None:
    run = AsyncMock(return_value=CycleResult(underlying="XYZ", state=CycleState.DONE))
    with _patched_cycle(run):
        assert main(["--symbol", "XYZ", "--force"]) == 0

    run.assert_awaited_once()
    assert run.await_args.kwargs["force"] is True
    assert "XYZ" in capsys.readouterr().out


@patch("scripts.run_ingestion.configure_logging")
def test_main_returns_zero_when_market_closed(_logging) -> None:
    run = AsyncMock(return_value=CycleResult(underlying="XYZ", state=CycleState.CLOSED_EXIT))
    with _patched_cycle(run):
        assert main(["--symbol", "XYZ"]) == 0


@patch("scripts.run_ingestion.configure_logging")
def test_main_returns_one_on_failure(_logging, capsys) -> None:
    failed = CycleResult(underlying="XYZ", state=CycleState.FAILED)
    run = AsyncMock(side_effect=FetchFailure("upstream down", result=failed))
    with _patched_cycle(run):
        assert main(["--symbol", "XYZ"]) == 1

    assert "fetch failed: upstream down" in capsys.readouterr().err
