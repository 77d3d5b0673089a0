from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any
import jwt
from src.config import settings

ACCESS_TOKEN_EXPIRE_MINUTES = 12 * 60

def create_access_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    """Issue a staff JWT (used by the seed script and tests)"""
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)

def verify_token(token: str, credentials_exception) -> Dict[str, Any]:
    """Decode a staff JWT or raise the supplied exception"""
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except jwt.PyJWTError:
        raise credentials_exception
    
    user_id = payload.get("user_id")
    if user_id is None:
        raise credentials_exception
    return {"user_id": int(user_id), "email": payload.get("sub")}
