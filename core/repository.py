"""
Portfolio Repository

In-memory record graph (securities by symbol, accounts by id, settings)
backed by the DocumentStore.

Concurrency:
- Writers to one security are serialized through a per-symbol lock
- Readers work on deep-copied snapshots and never see a half-applied trade

Copyright (c) 2026 Andreas Wagner. All rights reserved.
"""

import copy
import random
import threading
from contextlib import ExitStack, contextmanager
from dataclasses import dataclass
from typing import Dict, Iterator, Optional

from core.db import DocumentStore
from core.records import Account, Security, Settings
from utils.logging_config import setup_logger

logger = setup_logger(__name__)


def _new_account_id() -> str:
    return str(random.randint(1000000, 9999999))


@dataclass
class PortfolioSnapshot:
    """Consistent, detached copy of the record graph for read-only reporting."""
    securities: Dict[str, Security]
    accounts: Dict[str, Account]
    settings: Settings


class PortfolioRepository:
    """Record graph keyed by id with single-writer-per-security discipline."""

    def __init__(self, store: DocumentStore):
        self.store = store
        self._securities: Dict[str, Security] = {}
        self._accounts: Dict[str, Account] = {}
        self._settings = Settings()

        self._state_lock = threading.RLock()
        self._symbol_locks: Dict[str, threading.Lock] = {}

        self.reload()

    def reload(self):
        """Reload all records from the document store."""
        with self._state_lock:
            securities = self.store.load('securities') or {}
            accounts = self.store.load('accounts') or {}
            settings = self.store.load('settings')

            self._securities = {
                symbol: Security.from_dict(data) for symbol, data in securities.items()
            }
            self._accounts = {
                account_id: Account.from_dict(data) for account_id, data in accounts.items()
            }
            self._settings = Settings.from_dict(settings) if settings else Settings()

        logger.info(
            f"Loaded {len(self._securities)} securities and {len(self._accounts)} accounts"
        )

    # ------------------------------------------------------------------
    # Locking and snapshots
    # ------------------------------------------------------------------

    @contextmanager
    def writing(self, symbol: str) -> Iterator[None]:
        """Hold the single-writer lock for one security."""
        with self._state_lock:
            lock = self._symbol_locks.setdefault(symbol, threading.Lock())
        with lock:
            yield

    def snapshot(self) -> PortfolioSnapshot:
        with self._state_lock:
            return PortfolioSnapshot(
                securities=copy.deepcopy(self._securities),
                accounts=copy.deepcopy(self._accounts),
                settings=copy.deepcopy(self._settings),
            )

    # ------------------------------------------------------------------
    # Securities
    # ------------------------------------------------------------------

    def has_security(self, symbol: str) -> bool:
        with self._state_lock:
            return symbol in self._securities

    def get_security(self, symbol: str) -> Optional[Security]:
        """Return a detached copy of the security, or None if unknown."""
        with self._state_lock:
            security = self._securities.get(symbol)
            return copy.deepcopy(security) if security is not None else None

    def commit_security(self, security: Security):
        """Replace (or add) a security and persist the collection."""
        with self._state_lock:
            self._securities[security.symbol] = security
            self._save_securities()

    def _save_securities(self):
        self.store.save(
            'securities',
            {symbol: security.to_dict() for symbol, security in self._securities.items()},
        )

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    def get_account(self, account_id: str) -> Optional[Account]:
        with self._state_lock:
            account = self._accounts.get(account_id)
            return copy.deepcopy(account) if account is not None else None

    def create_account(self, name: str) -> Account:
        """Create an account under a new random 7-digit id."""
        with self._state_lock:
            account_id = _new_account_id()
            while account_id in self._accounts:
                account_id = _new_account_id()

            account = Account(account_id=account_id, name=name)
            self._accounts[account_id] = account
            self._save_accounts()

        logger.info(f"Created account {account_id} ({name})")
        return copy.deepcopy(account)

    def commit_account(self, account: Account):
        with self._state_lock:
            self._accounts[account.account_id] = account
            self._save_accounts()

    def delete_account(self, account_id: str) -> bool:
        """
        Delete an account and every lot and history entry it owns.

        Returns:
            True if the account existed
        """
        with self._state_lock:
            symbols = sorted(self._securities)

        # Lock order is always symbol locks (sorted) before the state lock
        with ExitStack() as stack:
            for symbol in symbols:
                stack.enter_context(self.writing(symbol))

            with self._state_lock:
                existed = self._accounts.pop(account_id, None) is not None

                for security in self._securities.values():
                    security.holdings = [
                        lot for lot in security.holdings if lot.account_id != account_id
                    ]
                    security.buy_history = [
                        e for e in security.buy_history if e.account_id != account_id
                    ]
                    security.sell_history = [
                        e for e in security.sell_history if e.account_id != account_id
                    ]

                self._save_accounts()
                self._save_securities()

        return existed

    def _save_accounts(self):
        self.store.save(
            'accounts',
            {account_id: account.to_dict() for account_id, account in self._accounts.items()},
        )

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    def get_settings(self) -> Settings:
        with self._state_lock:
            return copy.deepcopy(self._settings)

    def commit_settings(self, settings: Settings):
        with self._state_lock:
            self._settings = settings
            self.store.save('settings', settings.to_dict())
