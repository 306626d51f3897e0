import uuid
from typing import List, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from voidx.database.models import Workflow, WorkflowResult
from voidx.repositories.base_repository import BaseRepository


class WorkflowRepository(BaseRepository[Workflow]):
    """Repository for user workflows."""

    def __init__(self, session: AsyncSession):
        super().__init__(session, Workflow)

    async def get_by_tool_call_name(self, account_id: uuid.UUID, tool_call_name: str) -> Optional[Workflow]:
        result = await self.session.execute(
            select(Workflow).where(
                Workflow.account_id == account_id,
                Workflow.tool_call_name == tool_call_name,
            )
        )
        return result.scalar_one_or_none()

    async def list_by_account(
        self,
        account_id: uuid.UUID,
        current_page: int = 1,
        page_size: int = 20,
        search_word: str = "",
        status: str = "",
    ) -> Tuple[List[Workflow], int]:
        """Page through an account's workflows, newest first.

        Args:
            account_id: Owner account
            current_page: 1-based page number
            page_size: Rows per page
            search_word: Optional case-insensitive name filter
            status: Optional status filter (draft/published)

        Returns:
            Tuple of (workflows on the page, total matching rows)
        """
        conditions = [Workflow.account_id == account_id]
        if search_word:
            conditions.append(Workflow.name.ilike(f"%{search_word}%"))
        if status:
            conditions.append(Workflow.status == status)

        total = await self.session.execute(select(func.count()).select_from(Workflow).where(*conditions))
        result = await self.session.execute(
            select(Workflow)
            .where(*conditions)
            .order_by(Workflow.created_at.desc(), Workflow.id.desc())
            .offset((max(current_page, 1) - 1) * page_size)
            .limit(page_size)
        )
        return list(result.scalars().all()), int(total.scalar_one())


class WorkflowResultRepository(BaseRepository[WorkflowResult]):
    """Repository for per-run workflow results."""

    def __init__(self, session: AsyncSession):
        super().__init__(session, WorkflowResult)
