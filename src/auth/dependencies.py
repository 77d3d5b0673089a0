from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session
from typing import Optional
from src.database import get_db
from src.auth.utils import verify_token
from src.auth.service import UserService
from src.auth.schemas import StaffUser

bearer_scheme = HTTPBearer(auto_error=False)

SUPERVISOR_ROLES = {"admin", "supervisor"}

def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: Session = Depends(get_db)
) -> StaffUser:
    """Get current authenticated staff user"""
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    if credentials is None:
        raise credentials_exception
    
    # Verify token and get payload
    token_data = verify_token(credentials.credentials, credentials_exception)
    
    # Get user from database
    user = UserService.get_user_by_id(db, user_id=token_data["user_id"])
    if user is None:
        raise credentials_exception
    
    return StaffUser(
        id=user.id,
        name=user.name,
        email=user.email,
        roles=UserService.get_user_roles(db, user.id)
    )

def require_supervisor(current_user: StaffUser = Depends(get_current_user)) -> StaffUser:
    """Require supervisor or admin role (bypass operations)"""
    if not SUPERVISOR_ROLES.intersection(current_user.roles):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not enough permissions"
        )
    return current_user
