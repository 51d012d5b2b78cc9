"""Errors raised by the realtime story services, each tied to a wire code."""

from __future__ import annotations


class ErrorCode:
	SESSION_NOT_FOUND = "SESSION_NOT_FOUND"
	SESSION_CREATE_ERROR = "SESSION_CREATE_ERROR"
	SESSION_JOIN_ERROR = "SESSION_JOIN_ERROR"
	SESSION_EXPORT_ERROR = "SESSION_EXPORT_ERROR"
	CONTENT_VALIDATION_ERROR = "CONTENT_VALIDATION_ERROR"
	SEGMENT_ADD_ERROR = "SEGMENT_ADD_ERROR"
	INVALID_INVITE_TOKEN = "INVALID_INVITE_TOKEN"
	INVITE_GENERATE_ERROR = "INVITE_GENERATE_ERROR"
	INVITE_VALIDATE_ERROR = "INVITE_VALIDATE_ERROR"
	RECONNECT_ERROR = "RECONNECT_ERROR"
	AI_GENERATION_ERROR = "AI_GENERATION_ERROR"
	INVALID_EVENT = "INVALID_EVENT"
	INVALID_PAYLOAD = "INVALID_PAYLOAD"


class StoryError(Exception):
	"""Base class for failures reported back to a single connection."""

	code = ErrorCode.SEGMENT_ADD_ERROR

	def __init__(self, message: str) -> None:
		super().__init__(message)
		self.message = message

	def __str__(self) -> str:
		return self.message


class SessionNotFoundError(StoryError, KeyError):
	code = ErrorCode.SESSION_NOT_FOUND

	def __init__(self, session_id: str) -> None:
		super().__init__("Session not found")
		self.session_id = session_id


class ContentValidationError(StoryError, ValueError):
	code = ErrorCode.CONTENT_VALIDATION_ERROR


class ExportFormatError(StoryError, ValueError):
	code = ErrorCode.SESSION_EXPORT_ERROR


class InvalidInviteError(StoryError, KeyError):
	code = ErrorCode.INVALID_INVITE_TOKEN

	def __init__(self) -> None:
		super().__init__("Invalid or expired invite token")


class GenerationError(StoryError, RuntimeError):
	code = ErrorCode.AI_GENERATION_ERROR
