"""Tests for AppService.auto_create_app."""

import uuid

import pytest
from sqlalchemy import select

from voidx.core.exceptions import AppError, ValidationError
from voidx.database.models import AppConfigVersion
from voidx.services.app_service import PRESET_PROMPT_SYSTEM, AppService, build_default_config


@pytest.mark.asyncio
async def test_auto_create_app_writes_draft_config(session, language_model, account_id):
    language_model.answers = ["  # Role\nYou answer questions about tea.  "]
    service = AppService(session, language_model, default_model="gpt-4o-mini")

    app = await service.auto_create_app("Tea Helper", "Knows everything about tea", account_id)

    assert app.name == "Tea Helper"
    assert app.status == "draft"
    call = language_model.calls[0]
    assert "Tea Helper" in call["prompt"] and "Knows everything about tea" in call["prompt"]
    assert call["system"] == PRESET_PROMPT_SYSTEM
    assert call["temperature"] == 0.8

    draft = (await session.execute(select(AppConfigVersion).where(AppConfigVersion.app_id == app.id))).scalar_one()
    assert app.draft_app_config_id == draft.id
    assert (draft.version, draft.config_type) == (0, "draft")
    assert draft.config["preset_prompt"] == "# Role\nYou answer questions about tea."
    assert draft.config["model_config"]["model"] == "gpt-4o-mini"


@pytest.mark.asyncio
async def test_auto_create_app_requires_name(session, language_model):
    with pytest.raises(ValidationError):
        await AppService(session, language_model).auto_create_app("  ", "", uuid.uuid4())


@pytest.mark.asyncio
async def test_model_failure_is_wrapped(session, language_model, account_id):
    language_model.error = RuntimeError("model unavailable")

    with pytest.raises(AppError, match="model unavailable"):
        await AppService(session, language_model).auto_create_app("Tea Helper", "", account_id)


def test_default_config_is_independent_copy():
    config = build_default_config()
    config["tools"].append("x")

    assert build_default_config()["tools"] == []
    assert build_default_config(preset_prompt="  hi ")["preset_prompt"] == "hi"
