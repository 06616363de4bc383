"""
snow-relay
----------
HLS and PDF relay: fetches remote playlists, media segments and documents on
behalf of a browser and rewrites playlist references so every follow-up
request comes back through the relay.
"""

__version__ = "1.0.0"
