from __future__ import annotations


class ForgechatError(Exception):
    """Base error. `user_message` is what a client may see; `str(e)` is for logs."""

    user_message: str = "An unexpected error occurred"
    suggestion: str | None = "Please try again"

    def __init__(self, message: str | None = None, *, user_message: str | None = None, suggestion: str | None = None):
        super().__init__(message or self.user_message)
        if user_message is not None:
            self.user_message = user_message
        if suggestion is not None:
            self.suggestion = suggestion


class ChatRequestError(ForgechatError):
    user_message = "Invalid chat request"
    suggestion = None


class ConversationNotFound(ForgechatError):
    user_message = "Conversation not found"
    suggestion = None


class AdapterConnectionError(ForgechatError):
    user_message = "Could not connect to the AI service"
    suggestion = "Please try again in a moment"


class StaleStreamError(AdapterConnectionError):
    user_message = "The AI service stopped responding"
    suggestion = "Please try again"


class MalformedStreamError(ForgechatError):
    user_message = "Received an invalid response from the AI service"
    suggestion = "Please try again"


class PersistenceError(ForgechatError):
    user_message = "Could not save the conversation"
    suggestion = None


class ArtifactNotFound(ForgechatError):
    user_message = "Artifact not found"
    suggestion = None
