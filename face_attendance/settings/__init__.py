"""Default settings entry point used for development and tests."""

from .base import *  # noqa: F401,F403
