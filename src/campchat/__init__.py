"""Campground chat widget core: transports, conversation state, attachments, history and shell."""

__version__ = "0.1.0"
