from pydantic import BaseModel
from typing import Any, Optional

# client -> server
DM_JOIN = "dm:join"
GROUP_JOIN = "group:join"
MESSAGE_SEND = "message:send"
MESSAGE_DELETE = "message:delete"
MESSAGE_EDIT = "message:edit"

# server -> client
ACK = "ack"
PRESENCE_ONLINE_USERS = "presence:onlineUsers"
MESSAGE_NEW = "message:new"
MESSAGE_DELETED = "message:deleted"
MESSAGE_UPDATED = "message:updated"


class Frame(BaseModel):
    """One JSON text frame on the socket, in either direction."""
    event: str
    data: Any = None
    ack: Optional[int] = None


class DmJoinPayload(BaseModel):
    otherUserId: Optional[str] = None

class GroupJoinPayload(BaseModel):
    groupId: Optional[str] = None

class SendMessagePayload(BaseModel):
    kind: Optional[str] = None
    otherUserId: Optional[str] = None
    groupId: Optional[str] = None
    text: Optional[str] = None
    image: Optional[str] = None

class DeleteMessagePayload(BaseModel):
    messageId: Optional[str] = None

class EditMessagePayload(BaseModel):
    messageId: Optional[str] = None
    text: Optional[str] = None
