"""quantscope: tier-aware access to a remote metric endpoint catalog."""

__version__ = "0.1.0"
