from tts_module.protocol.framing import decode_frame, encode_frame
from tts_module.protocol.types import ErrorKind, MessageInType, MessageOutType

__all__ = ["decode_frame", "encode_frame", "ErrorKind", "MessageInType", "MessageOutType"]
