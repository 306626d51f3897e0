"""App service: AI-assisted app creation from a name and description."""

import copy
import uuid
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from voidx.core.exceptions import ValidationError
from voidx.core.interfaces import LanguageModel
from voidx.database.models import App
from voidx.repositories.app_repository import AppRepository
from voidx.services.base_service import BaseService
from voidx.utils.logging import get_logger

LOGGER = get_logger(__name__)

DEFAULT_APP_CONFIG: Dict[str, Any] = {
    "model_config": {
        "provider": "openrouter",
        "model": "",
        "parameters": {
            "temperature": 0.5,
            "top_p": 0.85,
            "frequency_penalty": 0.2,
            "presence_penalty": 0.2,
            "max_tokens": 8192,
        },
    },
    "dialog_round": 3,
    "preset_prompt": "",
    "tools": [],
    "workflows": [],
    "datasets": [],
    "retrieval_config": {"retrieval_strategy": "semantic", "k": 10, "score": 0.5},
    "long_term_memory": {"enable": False},
    "opening_statement": "",
    "opening_questions": [],
    "suggested_after_answer": {"enable": True},
    "review_config": {
        "enable": False,
        "keywords": [],
        "inputs_config": {"enable": False, "preset_response": ""},
        "outputs_config": {"enable": False},
    },
}

PRESET_PROMPT_SYSTEM = """# Role
You are a prompt engineer. You write the system prompt for an AI assistant from its name and description.

## Skills
- Work out the assistant's purpose, audience and language from the description
- Describe the assistant's role, its skills (with output formats where useful) and its constraints
- Keep the prompt concrete and under 2000 characters

## Output
Return only the finished prompt in markdown, starting with "# Role"."""


class AppService(BaseService):
    """Service for conversational apps."""

    def __init__(self, session: AsyncSession, language_model: LanguageModel, default_model: str = ""):
        """
        Args:
            session: Async database session
            language_model: Model that writes the preset prompt
            default_model: Model name stored in new app configs
        """
        super().__init__(AppRepository(session))
        self.session = session
        self.language_model = language_model
        self.default_model = default_model

    def validate(self, *args, **kwargs):
        if not (kwargs.get("name") or "").strip():
            raise ValidationError("App name is required")
        if not kwargs.get("account_id"):
            raise ValidationError("account_id is required")

    async def run(self, *args, **kwargs) -> App:
        return await self._auto_create_app(kwargs["name"], kwargs.get("description") or "", kwargs["account_id"])

    async def auto_create_app(self, name: str, description: str, account_id: uuid.UUID) -> App:
        """Create a draft app whose preset prompt is written by the language model."""
        return await self.execute(name=name, description=description, account_id=account_id)

    async def _auto_create_app(self, name: str, description: str, account_id: uuid.UUID) -> App:
        preset_prompt = await self.language_model.complete(
            f"App name: {name}\n\nApp description: {description}",
            system=PRESET_PROMPT_SYSTEM,
            temperature=0.8,
        )

        config = build_default_config(self.default_model, preset_prompt)
        app = await self.repository.create_with_draft_config(
            account_id=account_id,
            name=name.strip(),
            description=description,
            config=config,
        )
        LOGGER.info("App auto-created", extra={"app_id": str(app.id), "account_id": str(account_id)})
        return app


def build_default_config(model: str = "", preset_prompt: Optional[str] = None) -> Dict[str, Any]:
    config = copy.deepcopy(DEFAULT_APP_CONFIG)
    if model:
        config["model_config"]["model"] = model
    if preset_prompt:
        config["preset_prompt"] = preset_prompt.strip()
    return config
