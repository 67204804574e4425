"""
Configuration module for the voice gateway.

This module provides centralized configuration management for the entire application,
including constants, logging setup, and environment-based settings.

Key components:
- constants: Protocol event names, fixed turn-detection parameters, persistence limits.
- settings: The ``Settings`` model, read from the environment (and ``.env``).
- logging_config: Console plus rotating-file logging, and the crash guards that keep
  a long-running voice service alive after an unexpected exception.

Usage examples:
```python
from voice_gateway.config.constants import LOGGER_NAME
from voice_gateway.config.logging_config import configure_logging
from voice_gateway.config.settings import Settings

logger = configure_logging()
settings = Settings.from_env()
settings.validate_required()
```
"""
