from typing import Optional
from pydantic import BaseModel, ConfigDict


class Identity(BaseModel):
    """Authenticated caller as reported by the identity provider."""
    model_config = ConfigDict(frozen=True)

    user_id: str
    email: Optional[str] = None
