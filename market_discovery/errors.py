"""
Exception types raised by the discovery core.

Image failures are always local to one product: callers catch
ImageLoadError and carry on with text-only scoring. Price failures only
matter to numeric filters and sorts.
"""


class DiscoveryError(Exception):
    """Base class for all discovery engine errors."""


class ImageLoadError(DiscoveryError):
    """An image could not be fetched or decoded within its budget."""

    def __init__(self, url: str, reason: str = ""):
        self.url = url
        self.reason = reason
        message = f"Could not load image {url!r}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class ImageDecodeError(ImageLoadError):
    """Fetch failed or the payload is not a decodable image."""


class ImageTimeoutError(ImageLoadError):
    """Fetch + decode did not finish before the timeout."""


class MalformedPriceError(DiscoveryError, ValueError):
    """A price string has no parsable numeric content."""

    def __init__(self, raw):
        self.raw = raw
        super().__init__(f"Unparsable price: {raw!r}")
