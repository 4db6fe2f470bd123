"""
Transaction bookkeeping and progress output for a swap run.

Records every transaction the run submits (approval, swap) with its
timestamps and prints the lifecycle lines.
"""
from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional


def format_timestamp(start_time: Optional[float] = None, now: Optional[float] = None) -> str:
    """
    Format current timestamp with UTC time and elapsed time.

    Returns a string like "[2025-09-29 12:34:56 UTC | +123s]" or "[2025-09-29 12:34:56 UTC]".
    """
    if now is None:
        now = time.time()
    utc_time = datetime.fromtimestamp(now, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")
    if start_time:
        elapsed = int(now - start_time)
        return f"[{utc_time} | +{elapsed}s]"
    return f"[{utc_time}]"


@dataclass
class TxRecord:
    """One submitted transaction."""
    internal_id: int
    kind: str  # "approval" or "swap"
    tx_hash: str
    submit_time: float
    explorer_url: Optional[str] = None
    status: str = "submitted"  # submitted, confirmed, reverted, timeout
    confirm_time: Optional[float] = None
    block_number: Optional[int] = None
    error_message: Optional[str] = None


class TransactionTracker:
    """
    Keeps the ordered list of transactions a run has sent.
    """

    def __init__(self, label: Optional[str] = None, explorer_url: Optional[Callable[[str], str]] = None, clock: Callable[[], float] = time.time) -> None:
        self.label = label or "default"
        self.explorer_url = explorer_url
        self.clock = clock
        self.start_time = clock()
        self.records: List[TxRecord] = []

    def _prefix(self) -> str:
        return f"[{self.label}] [swap]"

    def log(self, message: str) -> None:
        print(f"{format_timestamp(self.start_time, now=self.clock())} {self._prefix()} {message}")

    def submitted(self, kind: str, tx_hash: str) -> TxRecord:
        record = TxRecord(
            internal_id=len(self.records) + 1,
            kind=kind,
            tx_hash=tx_hash,
            submit_time=self.clock(),
            explorer_url=self.explorer_url(tx_hash) if self.explorer_url else None,
        )
        self.records.append(record)
        self.log(f"✓ {kind.capitalize()} tx #{record.internal_id} submitted: {tx_hash}")
        if record.explorer_url and record.explorer_url != tx_hash:
            print(f"{self._prefix()}   Explorer: {record.explorer_url}")
        return record

    def confirmed(self, record: TxRecord, block_number: Optional[int], confirmations: int) -> None:
        record.status = "confirmed"
        record.confirm_time = self.clock()
        record.block_number = block_number
        duration = record.confirm_time - record.submit_time
        self.log(f"✓ {record.kind.capitalize()} tx #{record.internal_id} CONFIRMED in block {block_number} ({confirmations} confirmations)")
        print(f"{self._prefix()}   Confirmation time: {duration:.1f}s")

    def reverted(self, record: TxRecord, reason: str) -> None:
        record.status = "reverted"
        record.confirm_time = self.clock()
        record.error_message = reason
        self.log(f"✗ {record.kind.capitalize()} tx #{record.internal_id} REVERTED: {reason}")

    def timed_out(self, record: TxRecord, reason: str) -> None:
        record.status = "timeout"
        record.error_message = reason
        self.log(f"⚠ {record.kind.capitalize()} tx #{record.internal_id} not confirmed: {reason}")

    def of_kind(self, kind: str) -> List[TxRecord]:
        return [r for r in self.records if r.kind == kind]

    def get_summary(self) -> Dict[str, Any]:
        """Get transaction summary statistics."""
        return {
            "total": len(self.records),
            "approvals": len(self.of_kind("approval")),
            "swaps": len(self.of_kind("swap")),
            "confirmed": sum(1 for r in self.records if r.status == "confirmed"),
            "failed": sum(1 for r in self.records if r.status in ("reverted", "timeout")),
        }

    def print_summary(self) -> None:
        summary = self.get_summary()
        prefix = self._prefix()
        print(f"\n{prefix} === Transaction Summary ===")
        print(f"{prefix} Total: {summary['total']} (approvals: {summary['approvals']}, swaps: {summary['swaps']})")
        print(f"{prefix} Confirmed: {summary['confirmed']}")
        print(f"{prefix} Failed: {summary['failed']}\n")
