"""
Audit Logger

DESIGN DECISION: Every significant action in the system is logged.
This provides:
1. Complete traceability
2. Debugging capability
3. A history that complements soft-deleted ledger rows

The audit logger:
- Is async so it slots into the service flows without special casing
- Gracefully handles failures (a logging problem never fails an operation)
- Never receives secrets: builders take ids and names, not credentials
"""

import logging
from typing import Optional

import structlog

from finledger.models.audit import AuditEvent, AuditEventBuilder, AuditSeverity


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    # Loggers stay reconfigurable so structlog.testing.capture_logs works
    cache_logger_on_first_use=False,
)


def configure_logging(level: str = "INFO") -> None:
    """
    Route structlog output through stdlib logging at the given level.

    structlog renders the JSON; stdlib only decides what gets through.
    """
    logging.basicConfig(format="%(message)s", level=level.upper())
    logging.getLogger("finledger").setLevel(level.upper())


class AuditLogger:
    """
    Central audit logging service.

    Emits one structured "audit_event" line per domain event.
    """

    def __init__(self, logger_name: str = "finledger.audit"):
        self._logger = structlog.get_logger(logger_name)

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Returns False if the event could not be emitted; never raises.
        """
        try:
            log_dict = event.to_log_dict()
            if event.severity in (AuditSeverity.ERROR, AuditSeverity.CRITICAL):
                self._logger.error("audit_event", **log_dict)
            elif event.severity == AuditSeverity.WARNING:
                self._logger.warning("audit_event", **log_dict)
            elif event.severity == AuditSeverity.DEBUG:
                self._logger.debug("audit_event", **log_dict)
            else:
                self._logger.info("audit_event", **log_dict)
        except Exception as e:
            logging.getLogger(__name__).error(
                "audit logging failed for %s: %s", event.event_type.value, e
            )
            return False
        return True

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------

    async def log_user_registered(self, user_id: str, username: str, role: str) -> None:
        await self.log(AuditEventBuilder.user_registered(user_id, username, role))

    async def log_login_succeeded(self, user_id: str, username: str) -> None:
        await self.log(AuditEventBuilder.login_succeeded(user_id, username))

    async def log_login_failed(self, username: str) -> None:
        await self.log(AuditEventBuilder.login_failed(username))

    async def log_logout(self, user_id: Optional[str]) -> None:
        await self.log(AuditEventBuilder.logout(user_id))

    async def log_session_restored(self, user_id: str) -> None:
        await self.log(AuditEventBuilder.session_restored(user_id))

    async def log_session_discarded(self, reason: str, user_id: Optional[str] = None) -> None:
        await self.log(AuditEventBuilder.session_discarded(reason, user_id))

    async def log_session_refreshed(self, user_id: str) -> None:
        await self.log(AuditEventBuilder.session_refreshed(user_id))

    async def log_profile_updated(self, user_id: str, fields: list[str]) -> None:
        await self.log(AuditEventBuilder.profile_updated(user_id, fields))

    async def log_password_changed(self, user_id: str) -> None:
        await self.log(AuditEventBuilder.password_changed(user_id))

    async def log_account_deleted(self, user_id: str, deleted_counts: dict[str, int]) -> None:
        await self.log(AuditEventBuilder.account_deleted(user_id, deleted_counts))

    # ------------------------------------------------------------------
    # Ledger
    # ------------------------------------------------------------------

    async def log_transaction_created(
        self,
        user_id: str,
        transaction_id: str,
        amount: int,
        transaction_type: str,
        category_id: str,
    ) -> None:
        """Log transaction creation."""
        event = AuditEventBuilder.transaction_created(
            user_id=user_id,
            transaction_id=transaction_id,
            amount=amount,
            transaction_type=transaction_type,
            category_id=category_id,
        )
        await self.log(event)

    async def log_transaction_updated(
        self,
        user_id: str,
        transaction_id: str,
        fields: list[str],
    ) -> None:
        await self.log(AuditEventBuilder.transaction_updated(user_id, transaction_id, fields))

    async def log_transaction_deleted(self, user_id: str, transaction_id: str) -> None:
        await self.log(AuditEventBuilder.transaction_deleted(user_id, transaction_id))

    async def log_category_created(
        self,
        user_id: str,
        category_id: str,
        name: str,
        path: str,
    ) -> None:
        await self.log(AuditEventBuilder.category_created(user_id, category_id, name, path))

    async def log_budget_created(
        self,
        user_id: str,
        budget_id: str,
        category_id: str,
        amount: int,
    ) -> None:
        await self.log(AuditEventBuilder.budget_created(user_id, budget_id, category_id, amount))

    async def log_budget_status_changed(
        self,
        user_id: str,
        budget_id: str,
        old: str,
        new: str,
    ) -> None:
        await self.log(AuditEventBuilder.budget_status_changed(user_id, budget_id, old, new))

    async def log_budget_recalculated(
        self,
        user_id: str,
        budget_id: str,
        current_spent: int,
        remaining_amount: int,
        on_track: bool,
    ) -> None:
        """Log a budget tracking recomputation."""
        event = AuditEventBuilder.budget_recalculated(
            user_id=user_id,
            budget_id=budget_id,
            current_spent=current_spent,
            remaining_amount=remaining_amount,
            on_track=on_track,
        )
        await self.log(event)

    # ------------------------------------------------------------------
    # Failures
    # ------------------------------------------------------------------

    async def log_validation_failed(
        self,
        entity_type: str,
        stage: str,
        issues: list[dict],
        user_id: Optional[str] = None,
    ) -> None:
        """Log validation failure."""
        event = AuditEventBuilder.validation_failed(
            entity_type=entity_type,
            stage=stage,
            issues=issues,
            user_id=user_id,
        )
        await self.log(event)

    async def log_storage_error(
        self,
        operation: str,
        error_message: str,
        user_id: Optional[str] = None,
    ) -> None:
        await self.log(AuditEventBuilder.storage_error(operation, error_message, user_id))

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
    ) -> None:
        """Log an error."""
        event = AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
        )
        await self.log(event)
