"""
Branch resolution for multi-branch businesses.

Every business resolves to at least one active branch. When a business has
none, a main branch named "<business> - Principal" is provisioned on first
access. At most one active branch carries the main flag.
"""

import logging
from uuid import UUID, uuid4

from booking.errors import NotFoundError
from database.models import Branch, Business
from database.repository import BookingRepository

logger = logging.getLogger(__name__)

MAIN_BRANCH_SLUG = "principal"


class BranchService:
    def __init__(self, repository: BookingRepository) -> None:
        self.repository = repository

    async def get_business(self, business_id: UUID) -> Business:
        business = await self.repository.get_business(business_id)
        if business is None or not business.is_active:
            raise NotFoundError(
                "Negocio no encontrado",
                error_code="BUSINESS_NOT_FOUND",
                details={"business_id": str(business_id)},
            )
        return business

    async def get_branch(self, business_id: UUID, branch_id: UUID) -> Branch:
        """Branch of the business, active or not. Other tenants' branches are not found."""
        branch = await self.repository.get_branch(branch_id)
        if branch is None or branch.business_id != business_id:
            raise NotFoundError(
                "Sucursal no encontrada",
                error_code="BRANCH_NOT_FOUND",
                details={"branch_id": str(branch_id)},
            )
        return branch

    async def get_active_branches(self, business: Business) -> list[Branch]:
        branches = await self.repository.list_active_branches(business.id)
        if branches:
            return branches

        main = Branch(
            id=uuid4(),
            business_id=business.id,
            name=f"{business.name} - Principal",
            slug=MAIN_BRANCH_SLUG,
            timezone=business.timezone,
            is_main=True,
            is_active=True,
        )
        await self.repository.add_branch(main)
        logger.info(
            f"Provisioned main branch for business {business.slug}",
            extra={"business_id": str(business.id), "branch_id": str(main.id)},
        )
        return [main]

    async def get_main_branch(self, business: Business) -> Branch:
        branches = await self.get_active_branches(business)
        for branch in branches:
            if branch.is_main:
                return branch

        # No main flagged: promote the oldest active branch
        first = branches[0]
        await self.repository.set_main_branch(business.id, first.id)
        first.is_main = True
        logger.info(
            "Promoted oldest active branch to main",
            extra={"business_id": str(business.id), "branch_id": str(first.id)},
        )
        return first

    async def resolve_branch(self, business: Business, branch_id: UUID | None) -> Branch:
        """
        Branch an operation should run against.

        Supplied and active: that branch. Supplied but inactive, or omitted:
        the main branch (provisioned if the business has no branch at all).
        """
        if branch_id is not None:
            branch = await self.get_branch(business.id, branch_id)
            if branch.is_active:
                return branch
            logger.info(
                "Requested branch is inactive, falling back to main branch",
                extra={"branch_id": str(branch_id)},
            )
        return await self.get_main_branch(business)

    async def set_main_branch(self, business_id: UUID, branch_id: UUID) -> Branch:
        branch = await self.get_branch(business_id, branch_id)
        if not branch.is_active:
            raise NotFoundError(
                "Sucursal no encontrada",
                error_code="BRANCH_NOT_FOUND",
                details={"branch_id": str(branch_id)},
            )
        await self.repository.set_main_branch(business_id, branch_id)
        branch.is_main = True
        logger.info("Main branch updated", extra={"branch_id": str(branch_id)})
        return branch
