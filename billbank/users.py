"""
User Management Module
"""

from typing import Optional

from sqlalchemy import select

from .models import User
from .storage import Database
from .logging_config import get_logger, log_action


class UserService:
    """Creates and resolves bill owners"""
    
    def __init__(self, database: Database):
        self.database = database
        self.logger = get_logger("billbank.users")
    
    def create_user(self, first_name: str, last_name: str, email: str) -> User:
        with self.database.atomic() as session:
            user = User(first_name=first_name, last_name=last_name, email=email.lower())
            session.add(user)
            session.flush()
        
        log_action(
            self.logger, "info", "User created",
            user_id=user.uuid, action="create_user", resource=f"user:{user.uuid}"
        )
        return user
    
    def get_user(self, user_uuid: str) -> Optional[User]:
        with self.database.atomic() as session:
            return session.scalar(select(User).where(User.uuid == user_uuid))
