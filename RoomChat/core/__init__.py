from .exceptions import ChatError
from .message.protocol import ChatMessage, Incoming, IncomingType, Outgoing, OutgoingType

__all__ = ['ChatError', 'ChatMessage', 'Incoming', 'IncomingType', 'Outgoing', 'OutgoingType']
