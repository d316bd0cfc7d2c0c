"""
Lending system wiring for the API
"""

from typing import Optional

from ..audit import AuditTrail
from ..config import LendwiseConfig, get_config
from ..currency import Currency
from ..ledger import LoanLedger
from ..repository import StorageLoanRepository
from ..storage import StorageInterface, create_storage


class LendingSystem:
    """Storage, repository, audit trail and ledger built from one configuration"""

    def __init__(self, config: Optional[LendwiseConfig] = None,
                 storage: Optional[StorageInterface] = None):
        self.config = config or get_config()
        self.storage = storage or create_storage(self.config.storage_backend, self.config.database_path)

        self.repository = StorageLoanRepository(self.storage)
        self.audit_trail = AuditTrail(self.storage) if self.config.enable_audit_logging else None
        self.ledger = LoanLedger(
            self.repository,
            audit_trail=self.audit_trail,
            default_currency=Currency[self.config.default_currency],
            dust_threshold=self.config.dust_threshold,
            reject_backdated_payments=self.config.reject_backdated_payments,
        )

    def close(self) -> None:
        self.storage.close()


_lending_system: Optional[LendingSystem] = None


def get_lending_system() -> LendingSystem:
    """FastAPI dependency; builds the configured system on first use"""
    global _lending_system
    if _lending_system is None:
        _lending_system = LendingSystem()
    return _lending_system
