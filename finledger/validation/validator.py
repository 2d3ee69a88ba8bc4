"""
Two-Stage Transaction Validation

DESIGN DECISION: Validation happens in two distinct stages:

STAGE 1 - SCHEMA VALIDATION:
- Required field presence
- Enum values (type, status)
- Amount limits (positive, within the configured maximum)
- Description length
- Runs on the raw request, before any storage access

STAGE 2 - SEMANTIC VALIDATION:
- Category (and subcategory) exist and belong to the caller
- Subcategory really sits under the category
- Category type vs transaction type, far-future dates (warnings)
- Runs inside the storage transaction of the write it guards

WHY TWO STAGES:
1. Malformed input is rejected without touching storage
2. Ownership is checked against the same snapshot the write commits to
3. Partial updates only schema-check the fields they carry, but the
   semantic stage always sees the merged record

IMPORTANT: A category owned by someone else is not a validation problem.
It raises AuthorizationError, never a ValidationIssue, so a caller cannot
probe other users' category ids through validation messages.
"""

from datetime import timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Mapping, Optional

from finledger.config import AppSettings, get_settings
from finledger.errors import AuthorizationError
from finledger.models import (
    Category,
    TransactionStatus,
    TransactionType,
    ValidationIssue,
    ValidationResult,
)
from finledger.models.common import Clock, utc_now
from finledger.services.storage import RecordAccessInterface, Stores


REQUIRED_FIELDS = ("amount", "type", "date", "description", "category_id")

# Dates further ahead than this get a warning
FUTURE_DATE_WARNING_DAYS = 365


def to_minor_units(amount: Decimal) -> int:
    """Round half-up to a whole number of minor units."""
    return int(Decimal(amount).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class TransactionValidator:
    """
    Validates transaction input through a two-stage pipeline.

    Stage 1: check_schema() (no storage)
    Stage 2: check_semantic() (needs the transaction handle)
    """

    def __init__(
        self,
        settings: Optional[AppSettings] = None,
        clock: Clock = utc_now,
    ):
        self._settings = settings or get_settings().app
        self._clock = clock

    def _validate_schema(
        self,
        fields: Mapping[str, Any],
        partial: bool,
    ) -> tuple[bool, list[ValidationIssue]]:
        """
        Stage 1: Schema validation.

        With partial=True only the fields present are checked, and a
        required field is only "missing" if it is explicitly cleared.

        Returns: (is_valid, list_of_issues)
        """
        issues = []

        for name in REQUIRED_FIELDS:
            if partial and name not in fields:
                continue
            if fields.get(name) is None or fields.get(name) == "":
                issues.append(ValidationIssue(
                    field=name,
                    issue_type="missing",
                    message=f"{name.replace('_', ' ').capitalize()} is required",
                ))

        tx_type = fields.get("type")
        if tx_type not in (None, "") and tx_type not in {t.value for t in TransactionType}:
            issues.append(ValidationIssue(
                field="type",
                issue_type="invalid_value",
                message=f"Invalid transaction type: {tx_type}",
            ))

        status = fields.get("status")
        if status is not None and status not in {s.value for s in TransactionStatus}:
            issues.append(ValidationIssue(
                field="status",
                issue_type="invalid_value",
                message=f"Invalid transaction status: {status}",
            ))

        amount = fields.get("amount")
        if amount is not None:
            max_amount = self._settings.max_transaction_amount
            if amount <= 0:
                issues.append(ValidationIssue(
                    field="amount",
                    issue_type="invalid_value",
                    message="Amount must be greater than zero",
                ))
            elif to_minor_units(amount) < 1:
                issues.append(ValidationIssue(
                    field="amount",
                    issue_type="invalid_value",
                    message="Amount rounds to zero",
                ))
            elif to_minor_units(amount) > max_amount:
                issues.append(ValidationIssue(
                    field="amount",
                    issue_type="invalid_value",
                    message=f"Amount cannot exceed {max_amount}",
                ))

        description = fields.get("description")
        if description and len(description) > self._settings.max_description_length:
            issues.append(ValidationIssue(
                field="description",
                issue_type="too_long",
                message=(
                    "Description cannot exceed "
                    f"{self._settings.max_description_length} characters"
                ),
            ))

        currency = fields.get("currency")
        if currency is not None and (len(currency) != 3 or not currency.isalpha()):
            issues.append(ValidationIssue(
                field="currency",
                issue_type="invalid_value",
                message=f"Invalid currency code: {currency}",
            ))

        # Schema is valid if no errors (warnings are okay)
        is_valid = not any(issue.severity == "error" for issue in issues)

        return is_valid, issues

    async def _owned_category(
        self,
        access: RecordAccessInterface,
        user_id: str,
        category_id: str,
    ) -> Category:
        record = await access.get(Stores.CATEGORIES, category_id)
        if record is None or record.get("user_id") != user_id:
            raise AuthorizationError("Invalid category")
        return Category.model_validate(record)

    async def _validate_semantic(
        self,
        access: RecordAccessInterface,
        user_id: str,
        fields: Mapping[str, Any],
    ) -> tuple[bool, list[ValidationIssue], Category]:
        """
        Stage 2: Semantic validation over normalized, merged fields.

        Returns: (is_valid, list_of_issues, category)
        """
        issues = []
        category = await self._owned_category(access, user_id, fields["category_id"])

        subcategory_id = fields.get("subcategory_id")
        if subcategory_id:
            subcategory = await self._owned_category(access, user_id, subcategory_id)
            if subcategory.parent_id != category.id:
                issues.append(ValidationIssue(
                    field="subcategory_id",
                    issue_type="inconsistent",
                    message="Subcategory does not belong to the selected category",
                ))

        if not category.is_active:
            issues.append(ValidationIssue(
                field="category_id",
                issue_type="inactive",
                message=f"Category '{category.name}' is inactive",
                severity="warning",
            ))

        if not category.accepts(fields["type"]):
            issues.append(ValidationIssue(
                field="category_id",
                issue_type="type_mismatch",
                message=(
                    f"Category '{category.name}' is a {category.type.value} category"
                ),
                severity="warning",
            ))

        horizon = self._clock().date() + timedelta(days=FUTURE_DATE_WARNING_DAYS)
        if fields["date"] > horizon:
            issues.append(ValidationIssue(
                field="date",
                issue_type="future_date",
                message=f"Transaction date ({fields['date']}) is more than a year ahead",
                severity="warning",
            ))

        is_valid = not any(issue.severity == "error" for issue in issues)

        return is_valid, issues, category

    def check_schema(
        self,
        fields: Mapping[str, Any],
        partial: bool = False,
    ) -> ValidationResult:
        """Run stage 1 only. semantic_valid stays False until stage 2 runs."""
        schema_valid, issues = self._validate_schema(fields, partial)
        return ValidationResult(schema_valid=schema_valid, semantic_valid=False, issues=issues)

    async def check_semantic(
        self,
        access: RecordAccessInterface,
        user_id: str,
        fields: Mapping[str, Any],
    ) -> tuple[ValidationResult, Category]:
        """
        Run stage 2 on fields that already passed stage 1 and normalize().

        Raises:
            AuthorizationError: Category or subcategory missing or not owned
        """
        semantic_valid, issues, category = await self._validate_semantic(access, user_id, fields)
        result = ValidationResult(schema_valid=True, semantic_valid=semantic_valid, issues=issues)
        return result, category

    def normalize(self, fields: Mapping[str, Any]) -> dict[str, Any]:
        """
        Convert schema-valid request fields into ledger field values.

        Amount becomes integer minor units, enums become enum members,
        currency is upper-cased and tags are de-duplicated.
        """
        normalized = dict(fields)
        if normalized.get("amount") is not None:
            normalized["amount"] = to_minor_units(normalized["amount"])
        if normalized.get("type") is not None:
            normalized["type"] = TransactionType(normalized["type"])
        if "status" in normalized:
            status = normalized["status"]
            normalized["status"] = TransactionStatus(status) if status else TransactionStatus.CLEARED
        if normalized.get("currency") is not None:
            normalized["currency"] = normalized["currency"].upper()
        if normalized.get("tags") is not None:
            normalized["tags"] = list(dict.fromkeys(t for t in normalized["tags"] if t))
        return normalized
