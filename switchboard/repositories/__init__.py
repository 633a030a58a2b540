from switchboard.repositories.base import (
    AgentRepository,
    ChannelRepository,
    ConversationRepository,
    MessageRepository,
    ParametersRepository,
)

__all__ = [
    "AgentRepository",
    "ChannelRepository",
    "ConversationRepository",
    "MessageRepository",
    "ParametersRepository",
]
