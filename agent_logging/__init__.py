"""Rotating file and console logging for the QVoiceTxt components."""
from .setup import setup_logging, get_component_logger

__all__ = ["setup_logging", "get_component_logger"]
