"""
Language Reference Data Module

Languages available to users. The fixed set is seeded idempotently on
startup, keyed by language name.
"""

from typing import List, Optional

from sqlalchemy import select

from .models import Language
from .storage import Database, upsert
from .logging_config import get_logger


class LanguageService:
    
    LANGUAGES = (
        {"name": "Polish", "code": "pl"},
        {"name": "English", "code": "en"},
        {"name": "German", "code": "de"},
    )
    
    def __init__(self, database: Database):
        self.database = database
        self.logger = get_logger("billbank.languages")
    
    def get_languages(self) -> List[Language]:
        with self.database.atomic() as session:
            return list(session.scalars(select(Language).order_by(Language.id)))
    
    def get_language(self, language_uuid: str) -> Optional[Language]:
        with self.database.atomic() as session:
            return session.scalar(select(Language).where(Language.uuid == language_uuid))
    
    def set_languages(self) -> None:
        """Insert the known languages, updating codes of existing names"""
        with self.database.atomic() as session:
            for language in self.LANGUAGES:
                upsert(session, Language, language, index_elements=["name"], update_columns=["code"])
        self.logger.info("Seeded %d languages", len(self.LANGUAGES))
