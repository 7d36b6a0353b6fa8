"""Browser engines used by the product scraper."""

from .browser_pool import BrowserPool, family_headers, family_patch, render_patch_set

__all__ = ['BrowserPool', 'family_headers', 'family_patch', 'render_patch_set']
