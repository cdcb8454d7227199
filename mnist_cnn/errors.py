"""
errors.py
~~~~~~~~~

Exception types raised by the demo.
"""


class MnistDemoError(Exception):
    """Base class for errors raised by this package."""


class DataLoadError(MnistDemoError):
    """The sprite sheet or label buffer could not be fetched or decoded."""


class DataNotLoadedError(MnistDemoError):
    """A batch was requested before ``MnistData.load()`` completed."""
