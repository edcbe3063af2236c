from typing import Any, Optional
from pydantic import BaseModel

class CreateTopicRequest(BaseModel):
    # emptiness is checked by the registry so "" and "   " get the same answer
    name: Optional[str] = None

class PublishRequest(BaseModel):
    topic: Optional[str] = None
    message: Optional[Any] = None
    request_id: Optional[str] = None
