"""promptshelf: browse and download Copilot customization files from GitHub repositories."""

__version__ = "0.1.0"
