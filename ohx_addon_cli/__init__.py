"""OHX Addon CLI - package and publish addons to the OHX addon registry.

This package validates addon description files, authenticates against the
OHX OAuth service, builds one container image per architecture and
publishes the enriched addon record to the registry.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
