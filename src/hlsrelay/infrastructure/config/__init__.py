from __future__ import annotations

from .load import load_config
from .schema import AppConfig, EnvOverrides, RelayConfig

__all__ = ["AppConfig", "EnvOverrides", "RelayConfig", "load_config"]
