"""Feature flag providers for environment variables, Flagsmith, an in-process engine and Flipt."""

__version__ = "0.1.0"
__all__ = ["core", "fromenv", "flagsmith", "gofeatureflag", "flipt_service", "flipt"]