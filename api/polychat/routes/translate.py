"""Direct translation endpoints."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field

from polychat.core.exceptions import UnsupportedLanguageError, ValidationError
from polychat.routes._identity import get_current_user_id, get_translator
from polychat.services.translation.language_detector import is_supported_language
from polychat.services.translation.translator import TranslatorClient

router = APIRouter(prefix="/translate")
logger = logging.getLogger(__name__)


class TranslateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    text: str = Field(..., max_length=20000)
    target_language: str = Field(..., alias="targetLanguage", max_length=16)
    source_language: Optional[str] = Field(
        None, alias="sourceLanguage", max_length=16
    )


@router.post("")
async def translate_text(
    body: TranslateRequest,
    user_id: str = Depends(get_current_user_id),
    translator: TranslatorClient = Depends(get_translator),
):
    if not body.text.strip():
        raise ValidationError("Text is required", field="text")
    if not is_supported_language(body.target_language):
        raise UnsupportedLanguageError(body.target_language)

    result = await translator.translate_within(
        body.text, body.target_language, body.source_language or "auto"
    )
    return {"success": True, "data": result.to_dict()}


@router.get("/languages")
async def supported_languages(
    user_id: str = Depends(get_current_user_id),
    translator: TranslatorClient = Depends(get_translator),
):
    return {"success": True, "data": translator.get_supported_languages()}
