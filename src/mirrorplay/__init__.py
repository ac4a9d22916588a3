"""
Mirror Play voice practice client.

Handles microphone capture with silence-triggered submission, transcription
and voice analysis requests, and the client-side state of rehearsal and
duo-practice conversations.
"""

from mirrorplay.common.version import get_version

__version__ = get_version()
