"""Pydantic models and enums for the TTS module wire protocol.

Inbound messages are JSON objects carrying ``type`` and
``unique_request_id``.  Outbound replies form a closed tagged union on
``type``; each reply kind determines its payload shape.  Binary audio
frames are not modelled here, see :mod:`tts_module.protocol.framing`.
"""

from enum import Enum
from typing import Annotated, Literal, Union

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    field_validator,
    model_validator,
)

SENTINEL: str = "<|end_of_id|>"
FRAME_HEADER: str = "$"


class ErrorKind(str, Enum):
    """Wire-visible outcome of a provider operation."""

    SUCCESS = "SUCCESS"
    UNEXPECTED = "UNEXPECTED"
    AUTHORIZATION = "AUTHORIZATION"
    INVALID_PROVIDER = "INVALID_PROVIDER"
    INVALID_MODEL = "INVALID_MODEL"
    TIMEOUT = "TIMEOUT"
    INTERRUPT = "INTERRUPT"


class MessageInType(str, Enum):
    """Kinds of messages accepted by the server."""

    LOAD = "load"
    GENERATE = "generate"
    INTERRUPT = "interrupt"
    CLOSE = "close"
    GET_PROVIDERS = "get_providers"
    GET_MODELS = "get_models"
    GET_STREAM_FORMAT = "get_stream_format"
    CLEAR_TEMP_FILES = "clear_temp_files"


class MessageOutType(str, Enum):
    """Kinds of JSON replies emitted by the server."""

    LOAD_ACK = "load_ack"
    LOAD_DONE = "load_done"
    GENERATE_ACK = "generate_ack"
    GENERATE_DONE = "generate_done"
    GENERATE_STREAM_DONE = "generate_stream_done"
    INTERRUPT_ACK = "interrupt_ack"
    CLOSE_ACK = "close_ack"
    GET_PROVIDERS_DONE = "get_providers_done"
    GET_MODELS_DONE = "get_models_done"
    GET_STREAM_FORMAT_DONE = "get_stream_format_done"
    CLEAR_TEMP_FILES_ACK = "clear_temp_files_ack"


# Acks that are followed by a separate terminal reply.  Every other reply
# kind closes its request.
ACK_KINDS: frozenset[str] = frozenset(
    {MessageOutType.LOAD_ACK.value, MessageOutType.GENERATE_ACK.value}
)


# ---------------------------------------------------------------------------
# Audio descriptions
# ---------------------------------------------------------------------------


class StreamFormat(BaseModel):
    """PCM layout of streamed chunks."""

    bit_depth: int
    frequency: int
    channels_nb: int


class AudioFormat(StreamFormat):
    """Format of a generated audio file."""

    format: Literal["wav"] = "wav"


class SyncAudio(BaseModel):
    """Location and format of a completed audio artifact."""

    path: str
    audio_format: AudioFormat


class SyncResult(BaseModel):
    """Outcome of a synchronous generation: an error kind and, on success, the artifact."""

    error: ErrorKind
    value: SyncAudio | None = None


class StreamChunk(BaseModel):
    """One piece of streamed audio handed from a provider to the coordinator."""

    done: bool
    data: bytes = b""


# ---------------------------------------------------------------------------
# Inbound messages
# ---------------------------------------------------------------------------


class ConvertParams(BaseModel):
    """Optional output conversion requested by the caller."""

    format: Literal["wav"] = "wav"
    bit_depth: int
    frequency: int
    channels_nb: int
    bit_rate: int


class GenParams(BaseModel):
    """Generation parameters.  ``timeout_ms`` is required but may be null."""

    model_id: str
    voice_id: str
    timeout_ms: int | None = Field(ge=0)
    convert: ConvertParams | None = None


class Envelope(BaseModel):
    """Fields shared by every inbound message.

    ``request_id`` travels as ``unique_request_id`` on the wire;
    ``request_id`` is accepted as an alias.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    type: str
    request_id: str = Field(
        validation_alias=AliasChoices("unique_request_id", "request_id"),
        serialization_alias="unique_request_id",
    )

    @field_validator("request_id")
    @classmethod
    def _frameable_id(cls, value: str) -> str:
        if not value:
            raise ValueError("unique_request_id must be a non-empty string")
        if SENTINEL in value:
            raise ValueError(f"unique_request_id must not contain {SENTINEL!r}")
        return value


class LoadMessage(Envelope):
    """Request to swap the active provider.  Credentials ride along as extras."""

    type: Literal["load"] = "load"
    provider: str

    @property
    def load_params(self) -> dict:
        """Everything except the envelope, as handed to ``TTSProvider.init``."""
        return self.model_dump(exclude={"type", "request_id"})


class GenerateMessage(Envelope):
    """Request to produce audio, either as a file or as a stream of frames."""

    type: Literal["generate"] = "generate"
    input: str
    params: GenParams
    stream: bool


EXAMPLE_LOAD_MESSAGE: dict = {
    "type": "load",
    "unique_request_id": "<id>",
    "provider": "fishaudio",
    "api_key": "<api key>",
}

EXAMPLE_GENERATE_MESSAGE: dict = {
    "type": "generate",
    "unique_request_id": "<id>",
    "input": "This is a test message.",
    "params": {
        "model_id": "",
        "voice_id": "<voice id>",
        "timeout_ms": None,
        "convert": None,
    },
    "stream": False,
}


# ---------------------------------------------------------------------------
# Outbound replies
# ---------------------------------------------------------------------------


class Reply(BaseModel):
    """Base class for every JSON reply."""

    model_config = ConfigDict(populate_by_name=True)

    type: str
    request_id: str = Field(alias="unique_request_id")

    @property
    def is_terminal(self) -> bool:
        """Whether this reply closes its request."""
        return self.type not in ACK_KINDS


class _Outcome(BaseModel):
    """Mixin for replies that report an error kind."""

    error: ErrorKind
    is_error: bool = False

    @model_validator(mode="after")
    def _derive_is_error(self) -> "_Outcome":
        self.is_error = self.error is not ErrorKind.SUCCESS
        return self


class LoadAck(Reply):
    type: Literal["load_ack"] = "load_ack"
    provider: str


class LoadDone(_Outcome, Reply):
    type: Literal["load_done"] = "load_done"
    provider: str


class GenerateAck(Reply):
    type: Literal["generate_ack"] = "generate_ack"


class GenerateDone(_Outcome, Reply):
    type: Literal["generate_done"] = "generate_done"
    response: SyncAudio | None = None


class GenerateStreamDone(_Outcome, Reply):
    type: Literal["generate_stream_done"] = "generate_stream_done"


class InterruptAck(Reply):
    type: Literal["interrupt_ack"] = "interrupt_ack"


class CloseAck(Reply):
    type: Literal["close_ack"] = "close_ack"


class GetProvidersDone(Reply):
    type: Literal["get_providers_done"] = "get_providers_done"
    providers: list[str]


class GetModelsDone(Reply):
    type: Literal["get_models_done"] = "get_models_done"
    models: list[str]


class GetStreamFormatDone(Reply):
    type: Literal["get_stream_format_done"] = "get_stream_format_done"
    format: StreamFormat


class ClearTempFilesAck(Reply):
    type: Literal["clear_temp_files_ack"] = "clear_temp_files_ack"


AnyReply = Annotated[
    Union[
        LoadAck,
        LoadDone,
        GenerateAck,
        GenerateDone,
        GenerateStreamDone,
        InterruptAck,
        CloseAck,
        GetProvidersDone,
        GetModelsDone,
        GetStreamFormatDone,
        ClearTempFilesAck,
    ],
    Field(discriminator="type"),
]

_reply_adapter: TypeAdapter = TypeAdapter(AnyReply)


def parse_reply(data: dict) -> Reply:
    """Validate a decoded JSON reply into its concrete model.

    Raises:
        pydantic.ValidationError: if ``type`` is unknown or the payload
            does not match its kind.
    """
    return _reply_adapter.validate_python(data)
