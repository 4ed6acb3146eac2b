"""
Language endpoints
"""

from typing import List

from fastapi import APIRouter, Depends, HTTPException

from .auth import BankingSystem, get_banking_system
from .schemas import LanguageModel


router = APIRouter()


@router.get("", response_model=List[LanguageModel])
async def get_languages(system: BankingSystem = Depends(get_banking_system)):
    return [LanguageModel.from_language(language) for language in system.language_service.get_languages()]


@router.get("/{language_uuid}", response_model=LanguageModel)
async def get_language(language_uuid: str, system: BankingSystem = Depends(get_banking_system)):
    language = system.language_service.get_language(language_uuid)
    if language is None:
        raise HTTPException(status_code=404, detail="Language not found")
    return LanguageModel.from_language(language)
