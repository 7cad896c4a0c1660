"""Unified exception hierarchy for crm-chat."""


class CrmChatError(Exception):
    """Base exception for all crm-chat errors."""


# Extraction templates
class TemplateError(CrmChatError):
    """Base exception for extraction template operations."""


class TemplateValidationError(TemplateError):
    """Imported template set has an invalid shape or an uncompilable pattern."""


# Chat
class ChatError(CrmChatError):
    """Base exception for chat message operations."""


class MessageNotFoundError(ChatError):
    """No message with the given id in the conversation list."""


class MessageNotEditableError(ChatError):
    """Message kind or ownership does not allow the requested change."""


class ChatTransportError(ChatError):
    """Failed to reach the chat API or it returned an error."""


class MessageDeliveryError(ChatTransportError):
    """A send failed; the optimistic message has been marked failed."""

    def __init__(self, message: str, handle=None, failed_message=None):
        super().__init__(message)
        self.handle = handle
        self.message = failed_message
