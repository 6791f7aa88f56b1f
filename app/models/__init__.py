from app.models.user import User
from app.models.follow import Follow
from app.models.block import Block
from app.models.conversation import Conversation
from app.models.message import Message

__all__ = [
	"User",
	"Follow",
	"Block",
	"Conversation",
	"Message",
]
