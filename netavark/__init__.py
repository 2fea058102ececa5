"""Container network building blocks: configuration types, netlink, sysctl and plugins."""

__version__ = "1.17.0.dev0"