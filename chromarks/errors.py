from __future__ import annotations


class ChromarksError(Exception):
    """Base class for failures that abort initialization."""


class ConfigurationError(ChromarksError):
    """No usable bookmark source could be resolved."""


class FaviconCacheError(ChromarksError):
    """The favicon mirror could not be created or opened."""


class LocalStateError(ChromarksError):
    """A browser `Local State` file could not be used for profile discovery."""
