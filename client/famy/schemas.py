"""Pydantic schemas for the transcription, token and dialogue contracts."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class AudioDataMessage(BaseModel):
    audio_data: str


class TerminateMessage(BaseModel):
    terminate_session: bool = True


class TranscriptMessage(BaseModel):
    """Inbound partial result; messages without ``audio_start`` are control frames."""

    model_config = ConfigDict(extra="ignore")

    audio_start: int | None = None
    text: str = ""
    error: str | None = None
    message_type: str | None = None


class TokenResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    token: str | None = None
    error: str | None = None


class DialogueRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    text: str
    parent_message_id: str | None = Field(default=None, alias="parentMessageId")


class DialogueReply(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    answer: str
    message_id: str | None = Field(default=None, alias="messageId")
    tts_url: str | None = Field(default=None, alias="ttsUrl")


class QuestionItem(BaseModel):
    text: str
