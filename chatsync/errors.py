class ChatSyncError(Exception):
    """Base class for errors raised by the synchronization engine."""


class MissingUserError(ChatSyncError, ValueError):
    pass


class EmptyMessageError(ChatSyncError, ValueError):
    pass


class NoConversationSelected(ChatSyncError, ValueError):
    pass


class ConversationNotFound(ChatSyncError, LookupError):
    pass


class SendFailure(ChatSyncError):
    """A send did not fully complete.

    ``text`` is the caller's original input so it can be offered for retry.
    ``message_created`` tells whether the message itself was stored and only
    the conversation summary update failed.
    """

    def __init__(self, detail: str, text: str, message_created: bool = False, message: dict | None = None) -> None:
        super().__init__(detail)
        self.text = text
        self.message_created = message_created
        self.message = message


class SubscriptionFailure(ChatSyncError):
    pass


class NotAParticipant(ChatSyncError, PermissionError):
    pass
