"""
Tests for the document store, record serialization and the repository.
"""

import threading
from datetime import date
from decimal import Decimal

import pytest

from core.db import DocumentStore
from core.records import Account, Lot, Security, Settings
from core.repository import PortfolioRepository


class TestDocumentStore:

    def test_load_missing_key_returns_none(self, store):
        assert store.load('securities') is None

    def test_save_and_load(self, store):
        store.save('accounts', {'1234567': {'account_id': '1234567', 'name': 'Main'}})
        assert store.load('accounts') == {'1234567': {'account_id': '1234567', 'name': 'Main'}}

    def test_save_replaces_document(self, store):
        store.save('settings', {'currency': 'AUD'})
        store.save('settings', {'currency': 'USD'})
        assert store.load('settings') == {'currency': 'USD'}
        assert store.keys() == ['settings']

    def test_unknown_key_rejected(self, store):
        with pytest.raises(KeyError):
            store.save('notes', {})

    def test_documents_survive_reopen(self, tmp_path):
        path = tmp_path / "reopen.db"
        first = DocumentStore(path)
        first.save('settings', {'currency': 'NZD'})
        first.close()

        second = DocumentStore(path)
        assert second.load('settings') == {'currency': 'NZD'}
        second.close()

    def test_in_memory_store(self):
        memory = DocumentStore(":memory:")
        memory.save('accounts', {})
        assert memory.load('accounts') == {}
        memory.close()


class TestRecords:

    def test_security_round_trip_keeps_decimals_and_dates(self):
        security = Security(symbol="ABC", name="ABC", currency="AUD", resources=["Gold"])
        security.holdings.append(Lot(
            account_id="1", date=date(2025, 1, 2), quantity=Decimal("1.5"),
            price=Decimal("0.1"), brokerage=Decimal("9.95"), gst=Decimal("0.995"),
        ))

        data = security.to_dict()
        assert data['holdings'][0]['price'] == "0.1"
        assert data['holdings'][0]['date'] == "2025-01-02"

        assert Security.from_dict(data) == security

    def test_settings_defaults(self):
        settings = Settings.from_dict({})
        assert settings.currency == "AUD"
        assert settings.brokerage_auto_fill == Decimal("10")


class TestRepository:

    def test_snapshot_is_detached(self, store):
        repository = PortfolioRepository(store)
        repository.commit_security(Security(symbol="ABC", name="ABC", currency="AUD"))

        snapshot = repository.snapshot()
        snapshot.securities["ABC"].name = "CHANGED"

        assert repository.get_security("ABC").name == "ABC"

    def test_commits_are_persisted(self, store):
        repository = PortfolioRepository(store)
        repository.commit_security(Security(symbol="ABC", name="ABC", currency="AUD"))
        repository.commit_account(Account(account_id="1234567", name="Main"))

        reloaded = PortfolioRepository(store)
        assert reloaded.has_security("ABC")
        assert reloaded.get_account("1234567").name == "Main"

    def test_create_account_ids_are_unique_seven_digits(self, store):
        repository = PortfolioRepository(store)
        ids = {repository.create_account(f"Account {i}").account_id for i in range(20)}

        assert len(ids) == 20
        assert all(len(account_id) == 7 and account_id.isdigit() for account_id in ids)

    def test_delete_account_cascades(self, store):
        repository = PortfolioRepository(store)
        security = Security(symbol="ABC", name="ABC", currency="AUD")
        for account_id in ("1", "2"):
            security.holdings.append(Lot(
                account_id=account_id, date=date(2025, 1, 1), quantity=Decimal(1),
                price=Decimal(1), brokerage=Decimal(0), gst=Decimal(0),
            ))
        repository.commit_security(security)
        repository.commit_account(Account(account_id="1", name="One"))
        repository.commit_account(Account(account_id="2", name="Two"))

        assert repository.delete_account("1") is True
        assert repository.delete_account("1") is False

        remaining = repository.get_security("ABC").holdings
        assert [lot.account_id for lot in remaining] == ["2"]
        assert PortfolioRepository(store).get_account("1") is None

    def test_writing_serializes_same_symbol(self, store):
        repository = PortfolioRepository(store)
        inside = []
        overlap = []

        def writer():
            with repository.writing("ABC"):
                inside.append(1)
                if len(inside) > 1:
                    overlap.append(True)
                inside.pop()

        threads = [threading.Thread(target=writer) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert overlap == []
