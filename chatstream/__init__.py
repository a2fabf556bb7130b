"""chatstream: line-prefixed streaming protocol for one model-generation turn."""

__version__ = "0.1.0"
