"""
Record store.

The engines only see the `RecordStore` protocol: point lookup/upsert by address,
filtered account scans, pool aggregation, and the append-mostly ledger.

`InMemoryRecordStore` backs the API process and the tests; `JsonFileRecordStore`
persists the same state to a JSON file so the CLI can operate between runs.
"""

import json
import logging
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Protocol, runtime_checkable

from tokensale_app.errors import DuplicateReferenceError, LedgerStateError, StoreUnavailableError
from tokensale_app.schemas import Account, LedgerEntry, LedgerKind, LedgerStatus, utc_now

logger = logging.getLogger(__name__)


@runtime_checkable
class RecordStore(Protocol):
    def get_account(self, address: str) -> Optional[Account]:
        ...

    def upsert_account(self, account: Account) -> Account:
        ...

    def find_accounts(
        self,
        min_contributed_gt: Optional[float] = None,
        max_tranches_lt: Optional[int] = None,
        is_whale: Optional[bool] = None,
    ) -> List[Account]:
        ...

    def sum_contributed(self) -> float:
        ...

    def count_accounts(self) -> int:
        ...

    def add_ledger_entry(self, entry: LedgerEntry) -> LedgerEntry:
        ...

    def update_ledger_entry(
        self,
        entry_id: str,
        status: LedgerStatus,
        external_reference: Optional[str] = None,
        memo: Optional[str] = None,
    ) -> LedgerEntry:
        ...

    def find_ledger_by_reference(self, reference: str) -> Optional[LedgerEntry]:
        ...

    def list_ledger(
        self,
        status: Optional[LedgerStatus] = None,
        kind: Optional[LedgerKind] = None,
    ) -> List[LedgerEntry]:
        ...

    def atomic(self):
        """Context manager: writes inside it apply together or not at all."""
        ...


class InMemoryRecordStore:
    """Thread-safe dict-backed store. Reads hand out copies; writes go through `upsert_account`."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._accounts: Dict[str, Account] = {}
        self._ledger: Dict[str, LedgerEntry] = {}
        self._references: Dict[str, str] = {}  # external_reference -> entry_id

    # ── Accounts ──

    def get_account(self, address: str) -> Optional[Account]:
        with self._lock:
            account = self._accounts.get(address)
            return account.model_copy() if account else None

    def upsert_account(self, account: Account) -> Account:
        # Re-validate so the released <= allocated clamp applies on every write.
        stored = Account.model_validate(account.model_dump())
        with self._lock:
            self._accounts[stored.address] = stored
            self._after_write()
        return stored.model_copy()

    def find_accounts(
        self,
        min_contributed_gt: Optional[float] = None,
        max_tranches_lt: Optional[int] = None,
        is_whale: Optional[bool] = None,
    ) -> List[Account]:
        with self._lock:
            matches = []
            for account in self._accounts.values():
                if min_contributed_gt is not None and not account.contributed > min_contributed_gt:
                    continue
                if max_tranches_lt is not None and not account.tranches_completed < max_tranches_lt:
                    continue
                if is_whale is not None and account.is_whale != is_whale:
                    continue
                matches.append(account.model_copy())
            return matches

    def sum_contributed(self) -> float:
        with self._lock:
            return float(sum(a.contributed for a in self._accounts.values()))

    def count_accounts(self) -> int:
        with self._lock:
            return len(self._accounts)

    # ── Ledger ──

    def add_ledger_entry(self, entry: LedgerEntry) -> LedgerEntry:
        with self._lock:
            ref = entry.external_reference
            if ref is not None and ref in self._references:
                raise DuplicateReferenceError(ref)
            stored = entry.model_copy()
            self._ledger[stored.entry_id] = stored
            if ref is not None:
                self._references[ref] = stored.entry_id
            self._after_write()
            return stored.model_copy()

    def update_ledger_entry(
        self,
        entry_id: str,
        status: LedgerStatus,
        external_reference: Optional[str] = None,
        memo: Optional[str] = None,
    ) -> LedgerEntry:
        with self._lock:
            entry = self._ledger.get(entry_id)
            if entry is None:
                raise KeyError(f"Unknown ledger entry: {entry_id}")
            if entry.status.is_terminal:
                raise LedgerStateError(
                    f"Ledger entry {entry_id} is already {entry.status.value}"
                )
            if external_reference is not None:
                owner = self._references.get(external_reference)
                if owner is not None and owner != entry_id:
                    raise DuplicateReferenceError(external_reference)
                self._references[external_reference] = entry_id
                entry.external_reference = external_reference
            entry.status = status
            if memo is not None:
                entry.memo = memo
            entry.updated_at = utc_now()
            self._after_write()
            return entry.model_copy()

    def find_ledger_by_reference(self, reference: str) -> Optional[LedgerEntry]:
        with self._lock:
            entry_id = self._references.get(reference)
            return self._ledger[entry_id].model_copy() if entry_id else None

    def list_ledger(
        self,
        status: Optional[LedgerStatus] = None,
        kind: Optional[LedgerKind] = None,
    ) -> List[LedgerEntry]:
        with self._lock:
            return [
                e.model_copy()
                for e in self._ledger.values()
                if (status is None or e.status == status) and (kind is None or e.kind == kind)
            ]

    # ── Units of work ──

    @contextmanager
    def atomic(self) -> Iterator["InMemoryRecordStore"]:
        with self._lock:
            accounts = {k: v.model_copy() for k, v in self._accounts.items()}
            ledger = {k: v.model_copy() for k, v in self._ledger.items()}
            references = dict(self._references)
            try:
                yield self
            except BaseException:
                self._accounts, self._ledger, self._references = accounts, ledger, references
                self._after_write()
                raise

    def _after_write(self) -> None:
        """Hook for persistent subclasses."""


class JsonFileRecordStore(InMemoryRecordStore):
    """InMemoryRecordStore mirrored to a JSON file after every write."""

    def __init__(self, path: str) -> None:
        super().__init__()
        self._path = Path(path)
        self._loading = False
        if self._path.exists():
            self._load()

    def _load(self) -> None:
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            raise StoreUnavailableError(f"Cannot read store file {self._path}: {exc}") from exc
        self._loading = True
        try:
            for item in raw.get("accounts", []):
                self.upsert_account(Account.model_validate(item))
            for item in raw.get("ledger", []):
                entry = LedgerEntry.model_validate(item)
                self._ledger[entry.entry_id] = entry
                if entry.external_reference:
                    self._references[entry.external_reference] = entry.entry_id
        finally:
            self._loading = False
        logger.info(
            "Loaded %d accounts and %d ledger entries from %s",
            len(self._accounts),
            len(self._ledger),
            self._path,
        )

    def _after_write(self) -> None:
        if self._loading:
            return
        payload = {
            "accounts": [a.model_dump(mode="json") for a in self._accounts.values()],
            "ledger": [e.model_dump(mode="json") for e in self._ledger.values()],
        }
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp = self._path.with_suffix(self._path.suffix + ".tmp")
            tmp.write_text(json.dumps(payload, indent=2), encoding="utf-8")
            tmp.replace(self._path)
        except OSError as exc:
            raise StoreUnavailableError(f"Cannot write store file {self._path}: {exc}") from exc
