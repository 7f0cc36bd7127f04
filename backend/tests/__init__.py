"""Test package initialization."""

import os

# Default settings so siteworks.core.config.Settings never reaches a real service
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/0")
os.environ.setdefault("SLIP_TOKEN", "")
