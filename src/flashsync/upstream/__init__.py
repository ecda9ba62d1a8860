"""Upstream feed client."""

from flashsync.upstream.client import UpstreamClient, parse_feed

__all__ = ["UpstreamClient", "parse_feed"]
