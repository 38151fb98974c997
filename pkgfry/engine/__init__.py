"""Container engine access.

This package handles:
- The engine HTTP API client
- Demultiplexing attach streams into stdout/stderr
- Parsing image build progress streams
- Generating streamed tar build contexts
"""

from pkgfry.engine.build_output import BuildOutputParser
from pkgfry.engine.client import EngineClient
from pkgfry.engine.demux import StreamDemultiplexer
from pkgfry.engine.tar_stream import TarEntry, TarStream

__all__ = [
    "BuildOutputParser",
    "EngineClient",
    "StreamDemultiplexer",
    "TarEntry",
    "TarStream",
]
