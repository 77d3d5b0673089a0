from sqlalchemy.orm import Session
from typing import Optional, List
from src.models import User, Role, UserHasRole

class UserService:
    @staticmethod
    def get_user_by_id(db: Session, user_id: int) -> Optional[User]:
        """Get user by ID"""
        return db.query(User).filter(User.id == user_id).first()
    
    @staticmethod
    def get_user_roles(db: Session, user_id: int) -> List[str]:
        """Get user's role names"""
        rows = (
            db.query(Role.name)
            .join(UserHasRole, UserHasRole.role_id == Role.id)
            .filter(UserHasRole.user_id == user_id)
            .all()
        )
        return [row.name for row in rows]

