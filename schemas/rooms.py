from pydantic import BaseModel
from typing import Optional


class CreateRoomResponse(BaseModel):
    room_id: str
    ws_url: str

class OnlineUser(BaseModel):
    connection_id: str
    display_name: str

class RoomDetailsResponse(BaseModel):
    room_id: str
    online_users_count: int
    online_users: Optional[list[OnlineUser]] = None

class HealthResponse(BaseModel):
    status: str
    rooms: int
