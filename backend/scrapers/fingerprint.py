"""
Session fingerprint generation.

Each scrape attempt gets a fresh, randomized browser identity that is
consistent with the browser family it runs on (a Safari identity is
always macOS, a Firefox identity never carries a WebKit token, ...).

The identity carries two views of itself:
- summary(): a flat dict for logs and the debug display
- patch_set: a declarative description of in-page property overrides
  and wrapped functions. Turning it into an injectable script is the
  browser binding's job (see crawlers.browser_pool).
"""

import random
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional, Tuple

from .base import BrowserFamily


# ============================================================
# VALUE POOLS
# ============================================================

MAC_VERSIONS = ['10_15_7', '11_7_10', '12_6_8', '13_6_7', '14_5']
SAFARI_VERSIONS = ['16.6', '17.0', '17.1', '17.2', '17.3']
SAFARI_WEBKIT_VERSION = '605.1.15'
FIREFOX_VERSIONS = ['119.0', '120.0', '121.0', '122.0']
CHROME_VERSIONS = ['119.0.6045.199', '120.0.6099.109', '121.0.6167.85']

# Operating systems each family is allowed to claim
FAMILY_PLATFORMS = {
    BrowserFamily.SAFARI: ['macos'],
    BrowserFamily.FIREFOX: ['macos', 'windows'],
    BrowserFamily.CHROME: ['macos', 'windows'],
}

NAVIGATOR_PLATFORMS = {
    'macos': 'MacIntel',
    'windows': 'Win32',
}

SCREEN_RESOLUTIONS = [
    (1920, 1080),
    (1366, 768),
    (1536, 864),
    (1440, 900),
    (2560, 1440),
    (1680, 1050),
]
MIN_VIEWPORT = (1024, 768)
VIEWPORT_JITTER = (100, 50)  # max +/- offset on width, height

# Anchor cities: (name, latitude, longitude, timezone, locales)
GEO_ANCHORS = [
    ('New York', 40.7128, -74.0060, 'America/New_York', ['en-US']),
    ('Los Angeles', 34.0522, -118.2437, 'America/Los_Angeles', ['en-US', 'es-US']),
    ('Chicago', 41.8781, -87.6298, 'America/Chicago', ['en-US']),
    ('Denver', 39.7392, -104.9903, 'America/Denver', ['en-US']),
    ('Toronto', 43.6532, -79.3832, 'America/Toronto', ['en-CA', 'fr-CA']),
    ('London', 51.5074, -0.1278, 'Europe/London', ['en-GB']),
    ('Paris', 48.8566, 2.3522, 'Europe/Paris', ['fr-FR']),
    ('Berlin', 52.5200, 13.4050, 'Europe/Berlin', ['de-DE']),
    ('Madrid', 40.4168, -3.7038, 'Europe/Madrid', ['es-ES']),
    ('Sydney', -33.8688, 151.2093, 'Australia/Sydney', ['en-AU']),
]
GEO_JITTER_DEGREES = 0.05

ACCEPT_LANGUAGES = {
    'en-US': 'en-US,en;q=0.9',
    'es-US': 'es-US,es;q=0.9,en-US;q=0.8,en;q=0.7',
    'en-CA': 'en-CA,en;q=0.9,fr-CA;q=0.8',
    'fr-CA': 'fr-CA,fr;q=0.9,en-CA;q=0.8,en;q=0.7',
    'en-GB': 'en-GB,en;q=0.9,en-US;q=0.8',
    'fr-FR': 'fr-FR,fr;q=0.9,en;q=0.8',
    'de-DE': 'de-DE,de;q=0.9,en;q=0.8',
    'es-ES': 'es-ES,es;q=0.9,en;q=0.8',
    'en-AU': 'en-AU,en;q=0.9',
}

# Hardware values are drawn independently of each other
HARDWARE_CONCURRENCY = [4, 8, 10, 12, 16]
DEVICE_MEMORY = [4, 8, 16, 32]
MAX_TOUCH_POINTS = [0, 0, 0, 1, 5, 10]
COLOR_DEPTHS = [24, 30, 32]

WEBGL_PROFILES = {
    (BrowserFamily.SAFARI, 'macos'): [
        ('Apple Inc.', 'Apple GPU'),
        ('Apple Inc.', 'Apple M1'),
        ('Apple Inc.', 'Apple M2'),
        ('Apple Inc.', 'AMD Radeon Pro 5500M'),
    ],
    (BrowserFamily.FIREFOX, 'macos'): [
        ('Mozilla', 'Mozilla Firefox'),
        ('Apple', 'Apple M1, or similar'),
    ],
    (BrowserFamily.FIREFOX, 'windows'): [
        ('Mozilla', 'Mozilla Firefox'),
        ('Google Inc. (NVIDIA)', 'ANGLE (NVIDIA, NVIDIA GeForce GTX 980 Direct3D11 vs_5_0 ps_5_0), or similar'),
    ],
    (BrowserFamily.CHROME, 'macos'): [
        ('Google Inc. (Apple)', 'ANGLE (Apple, Apple M1 Pro, OpenGL 4.1)'),
        ('Google Inc. (Apple)', 'ANGLE (Apple, ANGLE Metal Renderer: Apple M2, Unspecified Version)'),
        ('Google Inc. (Intel Inc.)', 'ANGLE (Intel Inc., Intel(R) Iris(TM) Plus Graphics 655, OpenGL 4.1)'),
    ],
    (BrowserFamily.CHROME, 'windows'): [
        ('Google Inc. (NVIDIA)', 'ANGLE (NVIDIA, NVIDIA GeForce GTX 1650 Direct3D11 vs_5_0 ps_5_0, D3D11)'),
        ('Google Inc. (Intel)', 'ANGLE (Intel, Intel(R) UHD Graphics 630 Direct3D11 vs_5_0 ps_5_0, D3D11)'),
        ('Google Inc. (AMD)', 'ANGLE (AMD, AMD Radeon RX 580 Series Direct3D11 vs_5_0 ps_5_0, D3D11)'),
    ],
}

FAMILY_PLUGINS = {
    BrowserFamily.SAFARI: (
        [{'name': 'WebKit built-in PDF', 'filename': 'WebKit built-in PDF'}],
        [{'name': 'PDF Viewer', 'filename': 'internal-pdf-viewer'}],
    ),
    BrowserFamily.FIREFOX: (
        [{'name': 'PDF Viewer', 'filename': 'pdf.js'}],
        [{'name': 'Firefox PDF Viewer', 'filename': 'pdf.js'}],
    ),
    BrowserFamily.CHROME: (
        [
            {'name': 'PDF Viewer', 'filename': 'internal-pdf-viewer'},
            {'name': 'Chrome PDF Viewer', 'filename': 'internal-pdf-viewer'},
        ],
        [
            {'name': 'Chromium PDF Viewer', 'filename': 'internal-pdf-viewer'},
            {'name': 'Microsoft Edge PDF Viewer', 'filename': 'internal-pdf-viewer'},
            {'name': 'WebKit built-in PDF', 'filename': 'internal-pdf-viewer'},
        ],
    ),
}

COLOR_SCHEMES = ['light', 'dark', 'no-preference']
REDUCED_MOTION = ['reduce', 'no-preference']
CACHE_CONTROL = ['max-age=0', 'no-cache']
SEC_FETCH_SITE = ['none', 'same-origin', 'cross-site']


# ============================================================
# DECLARATIVE PATCH SET
# ============================================================

class PageExpression(str):
    """A value that is evaluated inside the page rather than serialized."""


@dataclass
class PatchSet:
    """
    Property overrides and function wrappers to install in a page.

    properties: target object ('navigator', 'screen', 'window') -> {name: value}
    removals: (target, name) pairs deleted before overrides are applied
    webgl: UNMASKED (vendor, renderer) reported by getParameter
    canvas_noise / audio_noise: amplitudes multiplied by a fresh in-page
        random draw every time canvas or audio data is generated
    clock_skew_ms: offset added to Date.now()
    battery: (level, charging) reported by navigator.getBattery()
    """
    properties: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    removals: List[Tuple[str, str]] = field(default_factory=list)
    webgl: Optional[Tuple[str, str]] = None
    canvas_noise: Optional[float] = None
    audio_noise: Optional[float] = None
    clock_skew_ms: Optional[int] = None
    battery: Optional[Tuple[float, bool]] = None

    def merged(self, overlay: 'PatchSet') -> 'PatchSet':
        """Return a new PatchSet with ``overlay`` layered on top."""
        properties = {target: dict(props) for target, props in self.properties.items()}
        for target, props in overlay.properties.items():
            properties.setdefault(target, {}).update(props)

        removals = list(self.removals)
        for removal in overlay.removals:
            if removal not in removals:
                removals.append(removal)

        return replace(
            self,
            properties=properties,
            removals=removals,
            webgl=overlay.webgl if overlay.webgl is not None else self.webgl,
            canvas_noise=overlay.canvas_noise if overlay.canvas_noise is not None else self.canvas_noise,
            audio_noise=overlay.audio_noise if overlay.audio_noise is not None else self.audio_noise,
            clock_skew_ms=overlay.clock_skew_ms if overlay.clock_skew_ms is not None else self.clock_skew_ms,
            battery=overlay.battery if overlay.battery is not None else self.battery,
        )


# ============================================================
# SESSION IDENTITY
# ============================================================

@dataclass
class SessionIdentity:
    """A randomized browser identity for one scraping session."""
    family: BrowserFamily
    os_name: str
    user_agent: str
    browser_version: str
    platform: str
    viewport: Dict[str, int]
    screen: Dict[str, int]
    color_depth: int
    locale: str
    languages: List[str]
    timezone_id: str
    geo_anchor: str
    geolocation: Dict[str, float]
    hardware_concurrency: int
    device_memory: int
    max_touch_points: int
    webgl_vendor: str
    webgl_renderer: str
    canvas_noise: float
    audio_noise: float
    clock_skew_ms: int
    headers: Dict[str, str]
    plugins: List[Dict[str, str]]
    color_scheme: str
    reduced_motion: str
    patch_set: PatchSet

    def context_options(self) -> Dict[str, Any]:
        """Keyword arguments for Playwright's browser.new_context()."""
        return {
            'user_agent': self.user_agent,
            'viewport': dict(self.viewport),
            'screen': dict(self.screen),
            'locale': self.locale,
            'timezone_id': self.timezone_id,
            'permissions': ['geolocation'],
            'geolocation': dict(self.geolocation),
            'extra_http_headers': dict(self.headers),
            'color_scheme': self.color_scheme,
            'reduced_motion': self.reduced_motion,
        }

    def summary(self) -> Dict[str, Any]:
        """Flat, loggable description of the identity."""
        return {
            'family': self.family.value,
            'os': self.os_name,
            'browser_version': self.browser_version,
            'user_agent': self.user_agent,
            'platform': self.platform,
            'viewport': f"{self.viewport['width']}x{self.viewport['height']}",
            'screen': f"{self.screen['width']}x{self.screen['height']}",
            'color_depth': self.color_depth,
            'locale': self.locale,
            'timezone': self.timezone_id,
            'geo_anchor': self.geo_anchor,
            'geolocation': (round(self.geolocation['latitude'], 4), round(self.geolocation['longitude'], 4)),
            'hardware_concurrency': self.hardware_concurrency,
            'device_memory': self.device_memory,
            'max_touch_points': self.max_touch_points,
            'webgl_vendor': self.webgl_vendor,
            'webgl_renderer': self.webgl_renderer,
            'plugin_count': len(self.plugins),
            'canvas_noise': round(self.canvas_noise, 6),
            'audio_noise': round(self.audio_noise, 6),
        }


class FingerprintGenerator:
    """
    Generates randomized session identities.

    Usage:
        generator = FingerprintGenerator()
        identity = generator.generate(BrowserFamily.FIREFOX)
        logger.debug(identity.summary())
    """

    def __init__(self, rng: Optional[random.Random] = None):
        self.rng = rng or random.Random()

    def generate(self, family: BrowserFamily) -> SessionIdentity:
        """
        Generate a fresh identity for a browser family.

        Always succeeds; every pool is static and non-empty.
        """
        rng = self.rng
        os_name = rng.choice(FAMILY_PLATFORMS[family])
        user_agent, browser_version = self._user_agent(family, os_name)

        screen_width, screen_height = rng.choice(SCREEN_RESOLUTIONS)
        viewport = self._viewport(screen_width, screen_height)
        color_depth = rng.choice(COLOR_DEPTHS)

        anchor_name, lat, lon, timezone_id, locales = rng.choice(GEO_ANCHORS)
        locale = rng.choice(locales)
        geolocation = {
            'latitude': lat + rng.uniform(-GEO_JITTER_DEGREES, GEO_JITTER_DEGREES),
            'longitude': lon + rng.uniform(-GEO_JITTER_DEGREES, GEO_JITTER_DEGREES),
        }
        languages = [locale, locale.split('-')[0]]

        hardware_concurrency = rng.choice(HARDWARE_CONCURRENCY)
        device_memory = rng.choice(DEVICE_MEMORY)
        max_touch_points = rng.choice(MAX_TOUCH_POINTS)

        webgl_vendor, webgl_renderer = rng.choice(WEBGL_PROFILES[(family, os_name)])
        canvas_noise = rng.uniform(0.01, 0.05)
        audio_noise = rng.uniform(0.05, 0.15)
        clock_skew_ms = rng.randint(-1000, 1000)
        battery = (round(rng.uniform(0.5, 1.0), 2), rng.random() > 0.5)

        plugins = self._plugins(family)
        platform = NAVIGATOR_PLATFORMS[os_name]

        navigator_props = {
            'webdriver': None,
            'platform': platform,
            'languages': languages,
            'hardwareConcurrency': hardware_concurrency,
            'maxTouchPoints': max_touch_points,
            'plugins': plugins,
        }
        # Only Chromium exposes navigator.deviceMemory
        if family == BrowserFamily.CHROME:
            navigator_props['deviceMemory'] = device_memory

        patch_set = PatchSet(
            properties={
                'navigator': navigator_props,
                'screen': {
                    'width': screen_width,
                    'height': screen_height,
                    'availWidth': screen_width,
                    'availHeight': screen_height - (25 if os_name == 'macos' else 40),
                    'colorDepth': color_depth,
                    'pixelDepth': color_depth,
                },
            },
            webgl=(webgl_vendor, webgl_renderer),
            canvas_noise=canvas_noise,
            audio_noise=audio_noise,
            clock_skew_ms=clock_skew_ms,
            battery=battery,
        )

        return SessionIdentity(
            family=family,
            os_name=os_name,
            user_agent=user_agent,
            browser_version=browser_version,
            platform=platform,
            viewport=viewport,
            screen={'width': screen_width, 'height': screen_height},
            color_depth=color_depth,
            locale=locale,
            languages=languages,
            timezone_id=timezone_id,
            geo_anchor=anchor_name,
            geolocation=geolocation,
            hardware_concurrency=hardware_concurrency,
            device_memory=device_memory,
            max_touch_points=max_touch_points,
            webgl_vendor=webgl_vendor,
            webgl_renderer=webgl_renderer,
            canvas_noise=canvas_noise,
            audio_noise=audio_noise,
            clock_skew_ms=clock_skew_ms,
            headers=self._headers(locale),
            plugins=plugins,
            color_scheme=rng.choice(COLOR_SCHEMES),
            reduced_motion=rng.choice(REDUCED_MOTION),
            patch_set=patch_set,
        )

    def _user_agent(self, family: BrowserFamily, os_name: str) -> Tuple[str, str]:
        rng = self.rng
        if family == BrowserFamily.SAFARI:
            version = rng.choice(SAFARI_VERSIONS)
            mac = rng.choice(MAC_VERSIONS)
            return (
                f"Mozilla/5.0 (Macintosh; Intel Mac OS X {mac}) AppleWebKit/{SAFARI_WEBKIT_VERSION} "
                f"(KHTML, like Gecko) Version/{version} Safari/{SAFARI_WEBKIT_VERSION}",
                version,
            )

        if family == BrowserFamily.FIREFOX:
            version = rng.choice(FIREFOX_VERSIONS)
            if os_name == 'windows':
                system = 'Windows NT 10.0; Win64; x64'
            else:
                system = 'Macintosh; Intel Mac OS X 10.15'
            return f"Mozilla/5.0 ({system}; rv:{version}) Gecko/20100101 Firefox/{version}", version

        version = rng.choice(CHROME_VERSIONS)
        if os_name == 'windows':
            system = 'Windows NT 10.0; Win64; x64'
        else:
            system = 'Macintosh; Intel Mac OS X 10_15_7'
        return (
            f"Mozilla/5.0 ({system}) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/{version} Safari/537.36",
            version,
        )

    def _viewport(self, screen_width: int, screen_height: int) -> Dict[str, int]:
        jitter_w, jitter_h = VIEWPORT_JITTER
        width = screen_width + self.rng.randint(-jitter_w, jitter_w)
        height = screen_height + self.rng.randint(-jitter_h, jitter_h)
        return {
            'width': min(screen_width, max(MIN_VIEWPORT[0], width)),
            'height': min(screen_height, max(MIN_VIEWPORT[1], height)),
        }

    def _plugins(self, family: BrowserFamily) -> List[Dict[str, str]]:
        base, optional = FAMILY_PLUGINS[family]
        plugins = [dict(p) for p in base]
        for plugin in optional:
            if self.rng.random() > 0.5:
                plugins.append(dict(plugin))
        return plugins

    def _headers(self, locale: str) -> Dict[str, str]:
        headers = {
            'Accept': 'text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,*/*;q=0.8',
            'Accept-Language': ACCEPT_LANGUAGES.get(locale, ACCEPT_LANGUAGES['en-US']),
            'Accept-Encoding': 'gzip, deflate, br',
            'Upgrade-Insecure-Requests': '1',
            'Sec-Fetch-Dest': 'document',
            'Sec-Fetch-Mode': 'navigate',
            'Sec-Fetch-Site': self.rng.choice(SEC_FETCH_SITE),
            'Sec-Fetch-User': '?1',
            'Cache-Control': self.rng.choice(CACHE_CONTROL),
        }
        if self.rng.random() > 0.5:
            headers['DNT'] = '1'
        return headers
