from switchboard.models.agent import Agent
from switchboard.models.channel import Channel
from switchboard.models.conversation import Conversation
from switchboard.models.intention import Intention
from switchboard.models.message import Message

__all__ = [
    "Agent",
    "Channel",
    "Conversation",
    "Intention",
    "Message",
]
