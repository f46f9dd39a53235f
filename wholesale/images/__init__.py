"""Content-addressable image caching."""

from wholesale.images.cache import BadHashRegistry, CacheEntry, ImageCache, image_key

__all__ = ["BadHashRegistry", "CacheEntry", "ImageCache", "image_key"]
