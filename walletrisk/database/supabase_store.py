"""
Supabase-backed Report Store
Each wallet is one row in the reports table, keyed by storage key and
upserted as a whole JSON document.

Expected table:
    create table wallet_reports (
        address text primary key,
        last_updated timestamptz not null,
        analysis_version text,
        report jsonb not null
    );
"""
from datetime import datetime
from typing import Any, Dict, List, Optional
import asyncio
import json
import logging

from pydantic import TypeAdapter, ValidationError
from supabase import Client, create_client

from config.settings import Settings
from walletrisk.database.report_store import ReportStore, ReportStoreError, report_key
from walletrisk.models.schemas import StoreStats, WalletReport, utcnow

logger = logging.getLogger(__name__)

# parses timestamptz text with any number of fractional digits
TIMESTAMP_ADAPTER = TypeAdapter(datetime)


class SupabaseReportStore(ReportStore):
    """ReportStore over a supabase table; supabase calls run in a worker thread"""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        client: Optional[Client] = None,
        table: Optional[str] = None,
    ):
        self.settings = settings or Settings()
        self.table = table or self.settings.SUPABASE_REPORTS_TABLE
        self.logger = logging.getLogger(self.__class__.__name__)

        if client is not None:
            self.client = client
        else:
            if not self.settings.SUPABASE_URL or not self.settings.SUPABASE_KEY:
                raise ReportStoreError("SUPABASE_URL and SUPABASE_KEY must be set for the supabase report backend")
            self.client = create_client(self.settings.SUPABASE_URL, self.settings.SUPABASE_KEY)

    async def _execute(self, action: str, query_fn) -> Any:
        try:
            return await asyncio.to_thread(lambda: query_fn().execute())
        except Exception as e:
            raise ReportStoreError(f"Supabase {action} on {self.table} failed: {e}") from e

    async def load(self, address: str) -> Optional[WalletReport]:
        key = report_key(address)
        result = await self._execute(
            "select",
            lambda: self.client.table(self.table).select("report").eq("address", key).limit(1),
        )
        if not result.data:
            return None
        document = result.data[0].get("report")
        try:
            if isinstance(document, str):
                return WalletReport.model_validate_json(document)
            return WalletReport.model_validate(document)
        except ValidationError as e:
            self.logger.warning(f"⚠️ Ignoring unreadable report row {key}: {e.error_count()} validation error(s)")
            return None

    async def save(self, report: WalletReport) -> WalletReport:
        report.last_updated = utcnow()
        row = {
            "address": report_key(report.address),
            "last_updated": report.last_updated.isoformat(),
            "analysis_version": report.analysis_version,
            "report": report.model_dump(mode="json"),
        }
        await self._execute("upsert", lambda: self.client.table(self.table).upsert(row))
        return report

    async def list_addresses(self) -> List[str]:
        result = await self._execute("select", lambda: self.client.table(self.table).select("address"))
        return sorted(row["address"] for row in (result.data or []) if row.get("address"))

    async def delete(self, address: str) -> bool:
        key = report_key(address)
        result = await self._execute("delete", lambda: self.client.table(self.table).delete().eq("address", key))
        deleted = bool(result.data)
        if deleted:
            self.logger.info(f"🗑️ Deleted report row for {address}")
        return deleted

    async def stats(self) -> StoreStats:
        result = await self._execute(
            "select", lambda: self.client.table(self.table).select("address, last_updated, report")
        )
        rows: List[Dict[str, Any]] = result.data or []
        if not rows:
            return StoreStats()

        timestamps = [
            TIMESTAMP_ADAPTER.validate_python(row["last_updated"]) for row in rows if row.get("last_updated")
        ]
        size_bytes = sum(len(json.dumps(row.get("report") or {})) for row in rows)
        return StoreStats(
            total_wallets=len(rows),
            total_size_mb=round(size_bytes / (1024 * 1024), 4),
            oldest_analysis=min(timestamps) if timestamps else None,
            newest_analysis=max(timestamps) if timestamps else None,
        )
