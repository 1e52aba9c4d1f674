from trawler.config.settings import Settings

__all__ = ["Settings"]
