"""
replayfetch - CS2 share code to demo file retrieval

Decodes match share codes, resolves their demo URLs under shared rate limits
and downloads the demos with a hard size ceiling.

Usage:
    from replayfetch import decode_sharecode, build_demo_url

    info = decode_sharecode("CSGO-GADqf-jjyJ8-cSP2r-smZRo-TO2xK")
    print(build_demo_url(info, shard=1))
"""

__version__ = "0.1.0"
__author__ = "replayfetch Contributors"


def __getattr__(name):
    """Lazy import so the codec stays usable without the network stack."""
    if name in ("decode_sharecode", "encode_sharecode", "build_demo_url", "ShareCodeInfo"):
        from replayfetch import sharecode

        return getattr(sharecode, name)
    elif name == "RateLimiter":
        from replayfetch.infra.ratelimit import RateLimiter
        return RateLimiter
    elif name == "URLResolver":
        from replayfetch.integrations.demo_url import URLResolver
        return URLResolver
    elif name == "DemoFetcher":
        from replayfetch.fetcher import DemoFetcher
        return DemoFetcher
    raise AttributeError(f"module 'replayfetch' has no attribute '{name}'")
