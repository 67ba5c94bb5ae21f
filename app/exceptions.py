"""Error taxonomy for the stream availability pipeline."""

from __future__ import annotations


class AvailabilityError(Exception):
    """Base class for failures raised while deciding stream availability."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ConfigurationError(AvailabilityError):
    """The media owner has no Stremio credential configured."""


class ResolutionMiss(AvailabilityError):
    """No IMDB identifier could be determined for a media item."""


class AddonListError(AvailabilityError):
    """The user's addon collection could not be fetched."""


class AuthError(AddonListError):
    """The Stremio credential is missing or was rejected."""


class NetworkError(AddonListError):
    """Transport failure or non-success status from the Stremio API."""


class AddonQueryError(AvailabilityError):
    """A single addon failed to answer a stream query."""

    def __init__(self, message: str, addon_id: str):
        self.addon_id = addon_id
        super().__init__(message)


class PersistenceError(AvailabilityError):
    """A verdict could not be written to the media store."""
