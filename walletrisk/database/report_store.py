"""
Wallet Report Store
One persisted WalletReport per address, with staleness checks and
load-modify-save helpers for each pipeline stage.
"""
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Union
import asyncio
import logging
import os
import re
import tempfile

from pydantic import ValidationError

from walletrisk.models.schemas import (
    AnalysisKind,
    FinalReport,
    RiskIndicators,
    StoreStats,
    SubAnalysisResult,
    WalletReport,
    utcnow,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_AGE_MINUTES = 30
_KEY_STRIP = re.compile(r"[^a-z0-9]")


class ReportStoreError(Exception):
    """Unexpected storage failure; fatal to the pipeline"""


def report_key(address: str) -> str:
    """Storage key: lower-cased address with everything but [a-z0-9] stripped"""
    key = _KEY_STRIP.sub("", (address or "").lower())
    if not key:
        raise ReportStoreError(f"Cannot derive a storage key from address {address!r}")
    return key


class ReportStore(ABC):
    """
    Async persistence for WalletReport documents.

    Backends implement load/save/list/delete/stats; the stage update helpers
    and the staleness check are shared.
    """

    @abstractmethod
    async def load(self, address: str) -> Optional[WalletReport]:
        """Return the stored report, or None when absent or unreadable"""

    @abstractmethod
    async def save(self, report: WalletReport) -> WalletReport:
        """Stamp last_updated and persist the whole report atomically"""

    @abstractmethod
    async def list_addresses(self) -> List[str]:
        """Addresses (storage keys) of all stored reports"""

    @abstractmethod
    async def delete(self, address: str) -> bool:
        """Remove a report; False when there was nothing to delete"""

    @abstractmethod
    async def stats(self) -> StoreStats:
        """Summary of the stored reports"""

    @staticmethod
    def is_stale(
        report: Optional[WalletReport],
        max_age_minutes: int = DEFAULT_MAX_AGE_MINUTES,
        now: Optional[datetime] = None,
    ) -> bool:
        """Absent reports are stale; otherwise stale once older than max_age_minutes"""
        if report is None:
            return True
        now = now or utcnow()
        last_updated = report.last_updated
        if last_updated.tzinfo is None:
            last_updated = last_updated.replace(tzinfo=timezone.utc)
        return now - last_updated > timedelta(minutes=max_age_minutes)

    async def _load_or_create(self, address: str) -> WalletReport:
        report = await self.load(address)
        return report if report is not None else WalletReport(address=address)

    async def update_raw_data(self, address: str, source_key: str, blob: Dict[str, Any]) -> WalletReport:
        report = await self._load_or_create(address)
        report.raw_data[source_key] = blob
        return await self.save(report)

    async def update_sub_analysis(
        self, address: str, kind: AnalysisKind, result: SubAnalysisResult
    ) -> WalletReport:
        if kind not in ("assets", "protocols", "pools"):
            raise ValueError(f"Unknown analysis kind: {kind}")
        report = await self._load_or_create(address)
        setattr(report.analysis, kind, result)
        return await self.save(report)

    async def update_final(self, address: str, final_report: FinalReport) -> WalletReport:
        report = await self._load_or_create(address)
        report.final_analysis = final_report
        return await self.save(report)

    async def update_risk_indicators(self, address: str, indicators: RiskIndicators) -> WalletReport:
        report = await self._load_or_create(address)
        report.risk_indicators = indicators
        return await self.save(report)


class FileReportStore(ReportStore):
    """One `<key>.json` document per wallet under a directory"""

    def __init__(self, directory: Union[str, Path] = "./data/wallets"):
        self.directory = Path(directory)
        self.logger = logging.getLogger(self.__class__.__name__)

    def _path(self, address: str) -> Path:
        return self.directory / f"{report_key(address)}.json"

    # ========================================================================
    # BLOCKING HELPERS (run via asyncio.to_thread)
    # ========================================================================

    def _read(self, path: Path) -> Optional[str]:
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            raise ReportStoreError(f"Failed to read {path}: {e}") from e

    def _write_atomic(self, path: Path, content: str) -> None:
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=self.directory, prefix=f".{path.stem}.", suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    handle.write(content)
                os.replace(tmp_name, path)
            except BaseException:
                if os.path.exists(tmp_name):
                    os.unlink(tmp_name)
                raise
        except OSError as e:
            raise ReportStoreError(f"Failed to write {path}: {e}") from e

    def _remove(self, path: Path) -> bool:
        try:
            path.unlink()
            return True
        except FileNotFoundError:
            return False
        except OSError as e:
            raise ReportStoreError(f"Failed to delete {path}: {e}") from e

    def _report_files(self) -> List[Path]:
        if not self.directory.exists():
            return []
        return sorted(p for p in self.directory.glob("*.json") if not p.name.startswith("."))

    def _collect_stats(self) -> StoreStats:
        files = self._report_files()
        if not files:
            return StoreStats()
        try:
            stats = [p.stat() for p in files]
        except OSError as e:
            raise ReportStoreError(f"Failed to stat reports in {self.directory}: {e}") from e
        mtimes = [datetime.fromtimestamp(s.st_mtime, tz=timezone.utc) for s in stats]
        return StoreStats(
            total_wallets=len(files),
            total_size_mb=round(sum(s.st_size for s in stats) / (1024 * 1024), 4),
            oldest_analysis=min(mtimes),
            newest_analysis=max(mtimes),
        )

    # ========================================================================
    # REPORTSTORE API
    # ========================================================================

    async def load(self, address: str) -> Optional[WalletReport]:
        path = self._path(address)
        content = await asyncio.to_thread(self._read, path)
        if content is None:
            return None
        try:
            return WalletReport.model_validate_json(content)
        except ValidationError as e:
            self.logger.warning(f"⚠️ Ignoring unreadable report {path.name}: {e.error_count()} validation error(s)")
            return None

    async def save(self, report: WalletReport) -> WalletReport:
        report.last_updated = utcnow()
        await asyncio.to_thread(self._write_atomic, self._path(report.address), report.model_dump_json(indent=2))
        self.logger.debug(f"Saved report for {report.address}")
        return report

    async def list_addresses(self) -> List[str]:
        files = await asyncio.to_thread(self._report_files)
        return [p.stem for p in files]

    async def delete(self, address: str) -> bool:
        deleted = await asyncio.to_thread(self._remove, self._path(address))
        if deleted:
            self.logger.info(f"🗑️ Deleted report for {address}")
        return deleted

    async def stats(self) -> StoreStats:
        return await asyncio.to_thread(self._collect_stats)
