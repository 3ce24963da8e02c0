"""prcleaner - cleans up cloud resources left behind by closed pull requests."""
__version__ = "0.1.0"
