"""maniforge - author, update and submit package manifests."""

__version__ = "0.4.0"
