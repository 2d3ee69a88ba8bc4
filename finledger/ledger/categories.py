"""
Category Service

User-created categories next to the defaults seeded at registration.
A subcategory lives under a parent owned by the same user; its path is
the parent's path plus its own slug.
"""

from typing import Any, Mapping, Optional, Union

from finledger.audit import AuditLogger
from finledger.errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from finledger.identity import IdentityManager, slugify
from finledger.models import (
    BudgetSettings,
    Category,
    CategoryCreate,
    CategoryType,
    parse_request,
)
from finledger.models.common import Clock, utc_now
from finledger.services.storage import StoreTransaction, Stores, TransactionAbortedError


class CategoryService:

    def __init__(
        self,
        identity: IdentityManager,
        audit_logger: Optional[AuditLogger] = None,
        clock: Clock = utc_now,
    ):
        self._identity = identity
        self._storage = identity.storage
        self._audit = audit_logger or AuditLogger()
        self._clock = clock

    async def create_category(
        self,
        data: Union[CategoryCreate, Mapping[str, Any]],
    ) -> Category:
        """
        Raises:
            ValidationError: Bad input, or type differs from the parent's
            AuthorizationError: Parent missing or owned by someone else
            ConflictError: The caller already has a category at this path
        """
        user = self._identity.require_user("categories:write")
        request = parse_request(CategoryCreate, data)
        now = self._clock()

        async def operations(tx: StoreTransaction) -> Category:
            parent = None
            if request.parent_id:
                record = await tx.get(Stores.CATEGORIES, request.parent_id)
                if record is None or record.get("user_id") != user.id:
                    raise AuthorizationError("Invalid parent category")
                parent = Category.model_validate(record)
                if parent.type != CategoryType.BOTH and request.type != parent.type:
                    raise ValidationError(
                        f"Subcategory type must be {parent.type.value}",
                        issues=[{
                            "field": "type",
                            "issue_type": "inconsistent",
                            "message": f"Parent category is {parent.type.value}",
                            "severity": "error",
                        }],
                    )

            slug = slugify(request.name)
            path = f"{parent.path}/{slug}" if parent else f"/{slug}"
            same_path = await tx.query_by_index(Stores.CATEGORIES, "path", path)
            if any(record["user_id"] == user.id for record in same_path):
                raise ConflictError(f"Category '{request.name}' already exists")

            category = Category(
                user_id=user.id,
                name=request.name,
                description=request.description,
                icon=request.icon,
                color=request.color,
                parent_id=parent.id if parent else None,
                path=path,
                level=parent.level + 1 if parent else 0,
                sort_order=request.sort_order,
                type=request.type,
                is_system=False,
                budget_settings=request.budget_settings or BudgetSettings(
                    allow_budgeting=request.type != CategoryType.INCOME
                ),
                created_at=now,
                updated_at=now,
                created_by=user.id,
            )
            await tx.add(Stores.CATEGORIES, category.to_record())
            return category

        try:
            category = await self._storage.execute_transaction([Stores.CATEGORIES], operations)
        except TransactionAbortedError as e:
            await self._audit.log_storage_error("create_category", str(e), user.id)
            raise

        await self._audit.log_category_created(user.id, category.id, category.name, category.path)
        return category

    async def get_category(self, category_id: str) -> Category:
        user = self._identity.require_user("categories:read")
        record = await self._storage.get(Stores.CATEGORIES, category_id)
        if record is None:
            raise NotFoundError("Category not found")
        if record.get("user_id") != user.id:
            raise AuthorizationError()
        return Category.model_validate(record)

    async def list_categories(
        self,
        category_type: Optional[CategoryType] = None,
        include_inactive: bool = False,
    ) -> list[Category]:
        """The caller's categories ordered by path, optionally of one exact type."""
        user = self._identity.require_user("categories:read")
        if category_type is None:
            records = await self._storage.query_by_index(Stores.CATEGORIES, "user_id", user.id)
        else:
            records = await self._storage.query_by_index(
                Stores.CATEGORIES,
                "user_id_type",
                (user.id, CategoryType(category_type).value),
            )
        categories = [Category.model_validate(record) for record in records]
        if not include_inactive:
            categories = [c for c in categories if c.is_active]
        return sorted(categories, key=lambda c: (c.path, c.id))
