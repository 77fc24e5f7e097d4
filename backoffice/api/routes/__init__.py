from . import clickup, facturen, offerte_public, offertes

__all__ = [
    "clickup",
    "facturen",
    "offerte_public",
    "offertes",
]
