class ChatSyncError(Exception):
    """Base class for conversation sync errors."""
    pass


class ConversationNotFound(ChatSyncError):
    """Raised when a conversation id does not resolve to a document."""
    pass


class ConversationAccessError(ChatSyncError):
    """Raised when a user tries to access a conversation they aren't part of."""
    pass


class SelfConversationError(ChatSyncError):
    """Raised when a provider tries to contact their own listing."""
    pass
