"""HTTP proxies that forward frames to upstream vision models."""

from proxy.settings import ProxySettings

__all__ = ["ProxySettings"]
