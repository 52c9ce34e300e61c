"""Client-side state and quick-chat synchronization for Hold'em rooms."""

__version__ = "1.0.0"
