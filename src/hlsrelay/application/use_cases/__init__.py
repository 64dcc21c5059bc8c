from .stream_relay import StreamRelayUseCase

__all__ = ["StreamRelayUseCase"]
