"""
Tests for the wallet report stores
File backend against tmp_path; supabase backend against a mocked client
"""
import json
from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from walletrisk.database.report_store import FileReportStore, ReportStore, ReportStoreError, report_key
from walletrisk.database.supabase_store import SupabaseReportStore
from walletrisk.models.schemas import (
    FinalReport,
    RiskIndicators,
    SubAnalysisResult,
    WalletReport,
    utcnow,
)

from conftest import WALLET


def sub_result(score: int = 30) -> SubAnalysisResult:
    return SubAnalysisResult(narrative="ok", risk_score=score)


class TestStaleness:
    """is_stale boundary behaviour"""

    def test_missing_report_is_stale(self):
        assert ReportStore.is_stale(None)

    def test_29_minutes_is_fresh_31_is_stale(self):
        now = utcnow()
        fresh = WalletReport(address=WALLET, last_updated=now - timedelta(minutes=29))
        stale = WalletReport(address=WALLET, last_updated=now - timedelta(minutes=31))
        assert not ReportStore.is_stale(fresh, 30, now=now)
        assert ReportStore.is_stale(stale, 30, now=now)

    def test_custom_max_age(self):
        now = utcnow()
        report = WalletReport(address=WALLET, last_updated=now - timedelta(minutes=10))
        assert ReportStore.is_stale(report, 5, now=now)
        assert not ReportStore.is_stale(report, 15, now=now)


def test_report_key_strips_non_alphanumerics():
    assert report_key("  0xABCdef-12 ") == "0xabcdef12"
    with pytest.raises(ReportStoreError):
        report_key("--")


class TestFileReportStore:
    """Test suite for FileReportStore"""

    @pytest.mark.asyncio
    async def test_load_missing_returns_none(self, file_store):
        assert await file_store.load(WALLET) is None

    @pytest.mark.asyncio
    async def test_save_then_load(self, file_store):
        report = WalletReport(address=WALLET.upper().replace("0X", "0x"))
        report.analysis.assets = sub_result(42)
        saved = await file_store.save(report)

        loaded = await file_store.load(WALLET)
        assert loaded.address == WALLET
        assert loaded.analysis.assets.risk_score == 42
        assert loaded.last_updated == saved.last_updated
        assert loaded.analysis_version == "2.0"

    @pytest.mark.asyncio
    async def test_save_stamps_last_updated(self, file_store):
        report = WalletReport(address=WALLET, last_updated=utcnow() - timedelta(days=2))
        await file_store.save(report)
        assert not file_store.is_stale(await file_store.load(WALLET))

    @pytest.mark.asyncio
    async def test_save_is_atomic(self, file_store):
        """Only the final document remains; no temp files linger"""
        await file_store.save(WalletReport(address=WALLET))
        await file_store.save(WalletReport(address=WALLET))
        files = sorted(p.name for p in file_store.directory.iterdir())
        assert files == [f"{WALLET}.json"]
        json.loads((file_store.directory / files[0]).read_text())

    @pytest.mark.asyncio
    async def test_invalid_document_treated_as_absent(self, file_store):
        file_store.directory.mkdir(parents=True)
        (file_store.directory / f"{WALLET}.json").write_text("{not json")
        assert await file_store.load(WALLET) is None

    @pytest.mark.asyncio
    async def test_stage_updates_accumulate(self, file_store):
        await file_store.update_raw_data(WALLET, "moralis", {"chains": {"ethereum": {}}})
        await file_store.update_risk_indicators(WALLET, RiskIndicators(new_wallet=True))
        await file_store.update_sub_analysis(WALLET, "pools", sub_result(0))
        final = FinalReport(overall_risk_score=10, risk_level="very-low", confidence_score=70, summary="fine")
        report = await file_store.update_final(WALLET, final)

        assert report.raw_data == {"moralis": {"chains": {"ethereum": {}}}}
        assert report.risk_indicators.new_wallet
        assert report.analysis.pools.risk_score == 0
        assert report.analysis.assets is None
        assert report.final_analysis.overall_risk_score == 10

        loaded = await file_store.load(WALLET)
        assert loaded.model_dump() == report.model_dump()

    @pytest.mark.asyncio
    async def test_unknown_analysis_kind_rejected(self, file_store):
        with pytest.raises(ValueError):
            await file_store.update_sub_analysis(WALLET, "liquidations", sub_result())

    @pytest.mark.asyncio
    async def test_list_delete_and_stats(self, file_store):
        other = "0x" + "ab" * 20
        assert (await file_store.stats()).total_wallets == 0

        await file_store.save(WalletReport(address=WALLET))
        await file_store.save(WalletReport(address=other))
        assert await file_store.list_addresses() == sorted([WALLET, other])

        stats = await file_store.stats()
        assert stats.total_wallets == 2
        assert stats.total_size_mb > 0
        assert stats.oldest_analysis <= stats.newest_analysis

        assert await file_store.delete(other)
        assert not await file_store.delete(other)
        assert await file_store.list_addresses() == [WALLET]

    @pytest.mark.asyncio
    async def test_unwritable_directory_raises(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("a file, not a directory")
        store = FileReportStore(blocker / "wallets")
        with pytest.raises(ReportStoreError):
            await store.save(WalletReport(address=WALLET))


def supabase_client(rows=None, fail=False):
    """MagicMock shaped like the supabase query builder"""
    client = MagicMock()
    query = client.table.return_value
    for method in ("select", "eq", "limit", "upsert", "delete"):
        getattr(query, method).return_value = query
    if fail:
        query.execute.side_effect = RuntimeError("connection refused")
    else:
        query.execute.return_value = MagicMock(data=rows if rows is not None else [])
    return client, query


class TestSupabaseReportStore:
    """Test suite for SupabaseReportStore"""

    @pytest.mark.asyncio
    async def test_save_upserts_whole_document(self, test_settings):
        client, query = supabase_client()
        store = SupabaseReportStore(settings=test_settings, client=client)

        report = WalletReport(address=WALLET)
        report.analysis.protocols = sub_result(5)
        await store.save(report)

        client.table.assert_called_with("wallet_reports")
        row = query.upsert.call_args[0][0]
        assert row["address"] == WALLET
        assert row["report"]["analysis"]["protocols"]["risk_score"] == 5
        assert row["analysis_version"] == "2.0"

    @pytest.mark.asyncio
    async def test_load_parses_row(self, test_settings):
        document = WalletReport(address=WALLET).model_dump(mode="json")
        client, query = supabase_client(rows=[{"report": document}])
        store = SupabaseReportStore(settings=test_settings, client=client)

        loaded = await store.load(WALLET)
        assert loaded.address == WALLET
        query.eq.assert_called_with("address", WALLET)

    @pytest.mark.asyncio
    async def test_load_missing_and_invalid(self, test_settings):
        client, _ = supabase_client(rows=[])
        assert await SupabaseReportStore(settings=test_settings, client=client).load(WALLET) is None

        client, _ = supabase_client(rows=[{"report": {"address": WALLET, "analysis": "garbage"}}])
        assert await SupabaseReportStore(settings=test_settings, client=client).load(WALLET) is None

    @pytest.mark.asyncio
    async def test_backend_failure_raises_store_error(self, test_settings):
        client, _ = supabase_client(fail=True)
        store = SupabaseReportStore(settings=test_settings, client=client)
        with pytest.raises(ReportStoreError):
            await store.load(WALLET)

    @pytest.mark.asyncio
    async def test_stats_from_rows(self, test_settings):
        rows = [
            {"address": WALLET, "last_updated": "2026-01-01T00:00:00+00:00", "report": {"a": 1}},
            {"address": "0x" + "ab" * 20, "last_updated": "2026-02-01T00:00:00+00:00", "report": {"b": 2}},
        ]
        client, _ = supabase_client(rows=rows)
        stats = await SupabaseReportStore(settings=test_settings, client=client).stats()
        assert stats.total_wallets == 2
        assert stats.oldest_analysis.month == 1
        assert stats.newest_analysis.month == 2

    @pytest.mark.asyncio
    async def test_stats_parse_short_fractional_seconds(self, test_settings):
        rows = [
            {"address": WALLET, "last_updated": "2026-01-01T00:00:00.12+00:00", "report": {}},
            {"address": "0x" + "ab" * 20, "last_updated": "2026-03-05T10:30:00.12345+00:00", "report": {}},
        ]
        client, _ = supabase_client(rows=rows)
        stats = await SupabaseReportStore(settings=test_settings, client=client).stats()
        assert stats.oldest_analysis.microsecond == 120000
        assert stats.newest_analysis.microsecond == 123450
        assert stats.newest_analysis.tzinfo is not None

    def test_requires_credentials_without_client(self, test_settings):
        with pytest.raises(ReportStoreError):
            SupabaseReportStore(settings=test_settings)
