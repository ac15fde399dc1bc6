# app/schemas/token.py
from typing import Optional

from pydantic import BaseModel


class TokenPayload(BaseModel):
    """Claims of the bearer token issued by the upstream auth service."""
    sub: Optional[str] = None
    exp: Optional[int] = None
