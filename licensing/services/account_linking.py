"""
Account Linking - Attach licenses bought under an email to the signed-in user.
"""

from sqlalchemy import func, update
from sqlalchemy.ext.asyncio import AsyncSession

from licensing.db.models import License
from licensing.exceptions import AuthenticationError
from licensing.models.domain import UserIdentity
from licensing.observability import get_logger
from licensing.services.validation import normalize_email

logger = get_logger(__name__)


class AccountLinkingService:
    """Links unowned licenses to a user by verified email."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize account linking service with database session."""
        self.session = session

    async def link_licenses(self, user: UserIdentity) -> int:
        """
        Set user_id on every license with the user's email and no owner yet.

        A single conditional UPDATE, so a license already linked to someone
        is never reassigned.

        Returns:
            Number of licenses linked by this call
        """
        if not user.email or not user.email_verified:
            raise AuthenticationError("verified email required")

        email = normalize_email(user.email)
        stmt = (
            update(License)
            .where(
                func.lower(License.owner_email) == email,
                License.user_id.is_(None),
            )
            .values(user_id=user.external_id)
            .returning(License.id)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        linked_count = len(result.scalars().all())
        await self.session.commit()

        logger.info("licenses_linked", user_id=user.external_id, linked_count=linked_count)
        return linked_count
