"""
Message Key Reference Data Module

Keys of the system messages shown to users, seeded idempotently by name.
"""

from typing import List

from sqlalchemy import select

from .models import MessageKey
from .storage import Database, upsert
from .logging_config import get_logger


class MessageKeyService:
    
    MESSAGE_KEYS = ("WELCOME_MESSAGE",)
    
    def __init__(self, database: Database):
        self.database = database
        self.logger = get_logger("billbank.messages")
    
    def get_message_keys(self) -> List[MessageKey]:
        with self.database.atomic() as session:
            return list(session.scalars(select(MessageKey).order_by(MessageKey.id)))
    
    def set_message_keys(self) -> None:
        with self.database.atomic() as session:
            for name in self.MESSAGE_KEYS:
                upsert(session, MessageKey, {"name": name}, index_elements=["name"])
        self.logger.info("Seeded %d message keys", len(self.MESSAGE_KEYS))
