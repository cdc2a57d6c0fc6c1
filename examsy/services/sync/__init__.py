"""
Live synchronization and mutation dispatch.

Components:
- Live mirror of the students, sessions and rooms collections
- Action dispatcher for the closed command vocabulary
"""

from .live_mirror import LiveMirror, CollectionMirror, MirrorSnapshot
from .dispatcher import ActionDispatcher

__all__ = [
    'LiveMirror',
    'CollectionMirror',
    'MirrorSnapshot',
    'ActionDispatcher',
]
