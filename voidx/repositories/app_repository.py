import uuid
from typing import Any, Dict

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from voidx.database.models import App, AppConfigVersion
from voidx.repositories.base_repository import BaseRepository


class AppRepository(BaseRepository[App]):
    """Repository for conversational apps and their draft configuration."""

    def __init__(self, session: AsyncSession):
        super().__init__(session, App)

    async def create_with_draft_config(
        self,
        account_id: uuid.UUID,
        name: str,
        description: str,
        config: Dict[str, Any],
        icon: str = "",
    ) -> App:
        """Create an app together with its version-0 draft config in one transaction."""
        try:
            app = App(account_id=account_id, name=name, description=description, icon=icon, status="draft")
            self.session.add(app)
            await self.session.flush()

            draft = AppConfigVersion(app_id=app.id, version=0, config_type="draft", config=config)
            self.session.add(draft)
            await self.session.flush()

            app.draft_app_config_id = draft.id
            await self.session.commit()
            return app
        except SQLAlchemyError as e:
            self.logger.error(f"Error creating app {name}: {str(e)}", exc_info=True)
            await self.session.rollback()
            raise
