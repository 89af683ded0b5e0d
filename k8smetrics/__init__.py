"""Building blocks for Kubernetes metric specs, discovery, caching and control plane clients."""

__version__ = "0.1.0"