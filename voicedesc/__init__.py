"""
Voice description service: turns videos and images into narrated
accessibility descriptions through a polled, step-wise job pipeline.
"""
from voicedesc.config import APP_VERSION

__version__ = APP_VERSION
