from pydantic import BaseModel

class Participant(BaseModel):
    id: str
    name: str = "User"
    image: str = ""
    is_deleted: bool = False
