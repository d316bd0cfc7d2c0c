"""
Tests for the storage-backed loan repository
"""

import sqlite3
import pytest
from decimal import Decimal
from datetime import datetime, timezone, date

from lendwise.currency import Money, Currency
from lendwise.exceptions import ConcurrentModificationError, LoanNotFoundError
from lendwise.loans import Borrower, LoanStatus, Payment, new_loan
from lendwise.repository import LoanRepository, StorageLoanRepository
from lendwise.storage import InMemoryStorage, SQLiteStorage


@pytest.fixture(params=["memory", "sqlite"])
def repository(request):
    storage = InMemoryStorage() if request.param == "memory" else SQLiteStorage(":memory:")
    yield StorageLoanRepository(storage)
    storage.close()


@pytest.fixture
def loan():
    borrower = Borrower(name="Sunita Rao", id_proof="PAN-77", phone="555-0101",
                        email="sunita@example.com", address="Bengaluru")
    return new_loan(borrower, Money(Decimal('50000')), Decimal('1.0'), date(2024, 1, 1))


def first_payment(loan) -> Payment:
    now = datetime.now(timezone.utc)
    return Payment(
        id="PAY-1",
        created_at=now,
        updated_at=now,
        loan_id=loan.id,
        sequence=1,
        payment_date=date(2024, 2, 1),
        amount_paid=Money(Decimal('1000')),
        interest_component=Money(Decimal('516.67')),
        principal_component=Money(Decimal('483.33')),
        remaining_balance=Money(Decimal('49516.67')),
        accrued_interest=Money(Decimal('516.67')),
        days_elapsed=31,
        note="cash",
    )


def apply_first_payment(loan) -> Payment:
    payment = first_payment(loan)
    loan.payments.append(payment)
    loan.current_balance = payment.remaining_balance
    loan.last_payment_date = payment.payment_date
    return payment


class TestStorageLoanRepository:
    """Round trips and writes through the repository"""

    def test_is_a_loan_repository(self, repository):
        assert isinstance(repository, LoanRepository)

    def test_new_loan_round_trip(self, repository, loan):
        repository.persist_new_loan(loan)
        loaded = repository.fetch_loan(loan.id)

        assert loaded.id == loan.id
        assert loaded.borrower == loan.borrower
        assert loaded.principal_amount == Money(Decimal('50000'))
        assert loaded.current_balance == Money(Decimal('50000'))
        assert loaded.interest_rate == Decimal('1.0')
        assert loaded.start_date == date(2024, 1, 1)
        assert loaded.last_payment_date == date(2024, 1, 1)
        assert loaded.status == LoanStatus.ACTIVE
        assert loaded.payments == []
        assert loaded.version == 0

    def test_borrowers_stored_in_own_table(self, repository, loan):
        repository.persist_new_loan(loan)
        stored = repository.storage.load(repository.borrowers_table, loan.borrower.id)
        assert stored["name"] == "Sunita Rao"
        assert repository.storage.load(repository.loans_table, loan.id)["borrower_id"] == loan.borrower.id

    def test_duplicate_loan_rejected(self, repository, loan):
        repository.persist_new_loan(loan)
        with pytest.raises(ValueError, match="already exists"):
            repository.persist_new_loan(loan)

    def test_fetch_missing_loan(self, repository):
        assert repository.fetch_loan("nope") is None

    def test_fetch_all_loans_in_creation_order(self, repository, loan):
        other = new_loan(Borrower(name="Ravi"), Money(Decimal('10'), Currency.USD), 2, date(2024, 3, 1))
        repository.persist_new_loan(loan)
        repository.persist_new_loan(other)

        loans = repository.fetch_all_loans()
        assert [l.id for l in loans] == [loan.id, other.id]
        assert loans[1].currency == Currency.USD

    def test_payment_and_loan_persisted_together(self, repository, loan):
        repository.persist_new_loan(loan)
        payment = apply_first_payment(loan)

        repository.persist_payment_and_updated_loan(loan, payment)
        assert loan.version == 1

        loaded = repository.fetch_loan(loan.id)
        assert loaded.version == 1
        assert loaded.current_balance == Money(Decimal('49516.67'))
        assert loaded.last_payment_date == date(2024, 2, 1)
        assert len(loaded.payments) == 1
        stored = loaded.payments[0]
        assert stored.id == "PAY-1"
        assert stored.interest_component == Money(Decimal('516.67'))
        assert stored.principal_component == Money(Decimal('483.33'))
        assert stored.days_elapsed == 31
        assert stored.note == "cash"

    def test_stale_version_rejected_without_writes(self, repository, loan):
        """A writer holding an old version cannot overwrite a newer loan"""
        repository.persist_new_loan(loan)
        stale = repository.fetch_loan(loan.id)

        payment = apply_first_payment(loan)
        repository.persist_payment_and_updated_loan(loan, payment)

        stale_payment = apply_first_payment(stale)
        stale_payment.id = "PAY-STALE"
        with pytest.raises(ConcurrentModificationError) as exc_info:
            repository.persist_payment_and_updated_loan(stale, stale_payment)

        assert exc_info.value.expected_version == 0
        assert exc_info.value.actual_version == 1
        assert stale.version == 0
        loaded = repository.fetch_loan(loan.id)
        assert [p.id for p in loaded.payments] == ["PAY-1"]

    def test_update_missing_loan(self, repository, loan):
        with pytest.raises(LoanNotFoundError):
            repository.persist_updated_loan(loan)

    def test_persist_updated_loan(self, repository, loan):
        repository.persist_new_loan(loan)
        loan.status = LoanStatus.DEFAULTED
        repository.persist_updated_loan(loan)

        loaded = repository.fetch_loan(loan.id)
        assert loaded.status == LoanStatus.DEFAULTED
        assert loaded.version == 1

    def test_payments_sorted_by_sequence(self, repository, loan):
        repository.persist_new_loan(loan)
        now = datetime.now(timezone.utc)
        for sequence in (2, 1, 3):
            repository.storage.save(repository.payments_table, f"P{sequence}", {
                'id': f"P{sequence}", 'created_at': now.isoformat(), 'updated_at': now.isoformat(),
                'loan_id': loan.id, 'sequence': sequence, 'payment_date': '2024-02-01',
                'currency': 'INR', 'amount_paid': '10.00', 'interest_component': '0.00',
                'principal_component': '10.00', 'remaining_balance': '0.00', 'accrued_interest': '0.00',
            })

        loaded = repository.fetch_loan(loan.id)
        assert [p.sequence for p in loaded.payments] == [1, 2, 3]


class InterleavingStorage(SQLiteStorage):
    """SQLiteStorage that runs a callback on its first loan read inside a transaction"""

    def __init__(self, db_path, **kwargs):
        super().__init__(db_path, **kwargs)
        self.on_locked_read = None

    def load(self, table, record_id):
        if self._in_transaction and table == "loans" and self.on_locked_read:
            callback, self.on_locked_read = self.on_locked_read, None
            callback()
        return super().load(table, record_id)


class TestSeparateConnections:
    """Two ledgers writing one SQLite file through their own connections"""

    @pytest.fixture
    def db_path(self, tmp_path):
        return tmp_path / "ledger.db"

    def test_writer_blocked_between_version_check_and_write(self, db_path):
        """A payment attempted while another connection is mid-write fails instead of being lost"""
        from lendwise.ledger import LoanLedger

        first_storage = InterleavingStorage(db_path)
        second_storage = SQLiteStorage(db_path, timeout=0.1)
        first = LoanLedger(StorageLoanRepository(first_storage))
        second = LoanLedger(StorageLoanRepository(second_storage))

        loan = first.create_loan(Borrower(name="Kavya"), '1000', '0', date(2024, 1, 1))
        blocked = []

        def pay_from_second_connection():
            with pytest.raises(sqlite3.OperationalError):
                second.record_payment(loan.id, '100', date(2024, 1, 2))
            blocked.append(True)

        first_storage.on_locked_read = pay_from_second_connection
        first.record_payment(loan.id, '300', date(2024, 1, 2))

        assert blocked == [True]
        stored = second.get_loan(loan.id)
        assert [(p.sequence, p.amount_paid) for p in stored.payments] == [(1, Money(Decimal('300')))]
        assert stored.current_balance == Money(Decimal('700'))
        assert stored.version == 1

        stored = second.record_payment(loan.id, '100', date(2024, 1, 3))
        assert [p.sequence for p in stored.payments] == [1, 2]
        assert stored.current_balance == Money(Decimal('600'))
        assert first.replay_payments(first.get_loan(loan.id)).matches(stored)

        first_storage.close()
        second_storage.close()

    def test_stale_loan_from_other_connection_rejected(self, db_path):
        first_storage = SQLiteStorage(db_path)
        second_storage = SQLiteStorage(db_path)
        first = StorageLoanRepository(first_storage)
        second = StorageLoanRepository(second_storage)

        loan = new_loan(Borrower(name="Kavya"), Money(Decimal('50000')), Decimal('1'), date(2024, 1, 1))
        first.persist_new_loan(loan)
        stale = second.fetch_loan(loan.id)

        fresh = first.fetch_loan(loan.id)
        first.persist_payment_and_updated_loan(fresh, apply_first_payment(fresh))

        stale_payment = apply_first_payment(stale)
        stale_payment.id = "PAY-STALE"
        with pytest.raises(ConcurrentModificationError):
            second.persist_payment_and_updated_loan(stale, stale_payment)

        assert [p.id for p in first.fetch_loan(loan.id).payments] == ["PAY-1"]
        first_storage.close()
        second_storage.close()
