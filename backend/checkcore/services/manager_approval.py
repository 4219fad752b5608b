"""Manager PIN authorization for gated check actions."""

from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy.orm import Session

from checkcore.core.errors import AuthorizationError
from checkcore.core.security import is_valid_pin, verify_pin
from checkcore.models.menu import Employee

logger = logging.getLogger(__name__)

# Privileges checked by the check lifecycle
VOID_SENT = "void_sent"
PRICE_OVERRIDE = "price_override"
APPLY_DISCOUNT = "apply_discount"
REOPEN_CHECK = "reopen_check"


class ManagerApprovalService:
    """Resolves a manager PIN to an employee holding a privilege."""

    def __init__(self, db: Session):
        self.db = db

    def candidates(self, privilege: str) -> list[Employee]:
        """Active employees with a PIN that hold ``privilege``."""
        employees = (
            self.db.query(Employee)
            .filter(Employee.active.is_(True), Employee.pin_hash.isnot(None))
            .order_by(Employee.id)
            .all()
        )
        return [employee for employee in employees if employee.has_privilege(privilege)]

    def authorize(self, pin: Optional[str], privilege: str) -> Employee:
        """Return the approving employee or raise AuthorizationError.

        Only holders of the privilege are hashed against, so a valid PIN
        of an employee without it is reported as an invalid manager PIN.
        """
        if not pin:
            raise AuthorizationError("Manager approval required", privilege=privilege)
        if not is_valid_pin(pin):
            raise AuthorizationError("Invalid manager PIN", privilege=privilege)

        for employee in self.candidates(privilege):
            if verify_pin(pin, employee.pin_hash):
                return employee

        logger.warning(f"Invalid manager PIN presented for {privilege}")
        raise AuthorizationError("Invalid manager PIN", privilege=privilege)
