"""Journey Warden - verification, failure classification and bounded healing for Playwright tests."""

__version__ = "0.1.0"
