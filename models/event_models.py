"""Inbound realtime event payloads, one model per event name."""

from __future__ import annotations

from typing import Dict, Optional, Type, Union

from pydantic import BaseModel, ConfigDict, Field


class EventPayload(BaseModel):
	model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=False)


class SessionCreatePayload(EventPayload):
	title: str
	starting_prompt: Optional[str] = Field(default=None, alias="startingPrompt")
	user_name: Optional[str] = Field(default=None, alias="userName")


class SessionJoinPayload(EventPayload):
	session_id: str = Field(alias="sessionId")
	user_name: Optional[str] = Field(default=None, alias="userName")


class SegmentAddPayload(EventPayload):
	session_id: str = Field(alias="sessionId")
	content: str
	# Clients may number their requests; the id is echoed back unchanged.
	request_id: Optional[Union[str, int]] = Field(default=None, alias="requestId")


class SessionExportPayload(EventPayload):
	session_id: str = Field(alias="sessionId")
	format: str = "text"


class InviteGeneratePayload(EventPayload):
	session_id: str = Field(alias="sessionId")
	base_url: Optional[str] = Field(default=None, alias="baseUrl")


class InviteValidatePayload(EventPayload):
	token: str


class SessionReconnectPayload(EventPayload):
	session_id: str = Field(alias="sessionId")
	participant_id: Optional[str] = Field(default=None, alias="participantId")


EVENT_PAYLOADS: Dict[str, Type[EventPayload]] = {
	"session:create": SessionCreatePayload,
	"session:join": SessionJoinPayload,
	"segment:add": SegmentAddPayload,
	"session:export": SessionExportPayload,
	"invite:generate": InviteGeneratePayload,
	"invite:validate": InviteValidatePayload,
	"session:reconnect": SessionReconnectPayload,
}
