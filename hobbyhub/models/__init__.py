from hobbyhub.models.chat import ChatMember, ChatMessage, ChatRoom
from hobbyhub.models.event import Event, EventJoinRequest, EventParticipant
from hobbyhub.models.notification import Notification
from hobbyhub.models.swipe import Swipe
from hobbyhub.models.user import Friendship, User, UserHobby, UserLocation, UserReview

__all__ = [
    "ChatMember",
    "ChatMessage",
    "ChatRoom",
    "Event",
    "EventJoinRequest",
    "EventParticipant",
    "Friendship",
    "Notification",
    "Swipe",
    "User",
    "UserHobby",
    "UserLocation",
    "UserReview",
]
