"""Transport bridges that feed protocol events into the store."""

from .irc_bridge import IrcBridge

__all__ = ['IrcBridge']
