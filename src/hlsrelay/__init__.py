"""HLS/M3U8 stream relay with referer spoofing and playlist rewriting."""

__version__ = "0.1.0"
