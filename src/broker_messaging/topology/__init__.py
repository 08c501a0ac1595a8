"""Channel setup and topology declaration."""

from .channel_declarer import ChannelDeclarer

__all__ = ["ChannelDeclarer"]
