from pydantic import BaseModel
from typing import List

class StaffUser(BaseModel):
    """Authenticated staff member acting on the access API"""
    id: int
    name: str
    email: str
    roles: List[str] = []
    
    class Config:
        from_attributes = True
