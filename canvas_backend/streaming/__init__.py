from .frames import Frame, encode_sse
from .transport import InvocationChannel, StreamMultiplexer

__all__ = ["Frame", "InvocationChannel", "StreamMultiplexer", "encode_sse"]
