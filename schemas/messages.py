from pydantic import BaseModel, Field
from typing import Optional


class SenderProfile(BaseModel):
    id: str = Field(alias="_id")
    fullName: str = ""
    profilePic: str = ""

    model_config = {"populate_by_name": True}

class Message(BaseModel):
    id: str = Field(alias="_id")
    kind: str
    roomId: str
    sender: SenderProfile
    recipient: Optional[str] = None
    group: Optional[str] = None
    text: str = ""
    image: str = ""
    createdAt: str
    updatedAt: str

    model_config = {"populate_by_name": True}

class HistoryResponse(BaseModel):
    roomId: str
    messages: list[Message]
