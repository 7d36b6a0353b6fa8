"""
Browser engine pool for multi-engine failover.

Keeps one long-lived Playwright browser per family (Safari -> webkit,
Firefox -> firefox, Chrome -> chromium), launched lazily on first use
and shared by every scrape until close_all().

The pool also binds session identities to an engine: it layers the
family's real-world header and property signature over the generated
fingerprint and renders the declarative patch set into an init script.
"""

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

from playwright.async_api import async_playwright

from ..base import BrowserFamily, family_for_attempt
from ..fingerprint import FingerprintGenerator, PageExpression, PatchSet, SessionIdentity

logger = logging.getLogger(__name__)


CLEANUP_TIMEOUT = 5.0  # seconds per close operation

# Playwright browser type per family
ENGINE_TYPES = {
    BrowserFamily.SAFARI: 'webkit',
    BrowserFamily.FIREFOX: 'firefox',
    BrowserFamily.CHROME: 'chromium',
}

CHROMIUM_ARGS = [
    '--disable-blink-features=AutomationControlled',
    '--disable-dev-shm-usage',
    '--no-sandbox',
    '--disable-setuid-sandbox',
    '--disable-background-timer-throttling',
    '--disable-backgrounding-occluded-windows',
    '--disable-renderer-backgrounding',
]

FIREFOX_PREFS = {
    'dom.webdriver.enabled': False,
    'useAutomationExtension': False,
    'privacy.resistFingerprinting': False,
}

FAMILY_ACCEPT = {
    BrowserFamily.SAFARI: 'text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8',
    BrowserFamily.FIREFOX: 'text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,*/*;q=0.8',
    BrowserFamily.CHROME: (
        'text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,'
        'image/apng,*/*;q=0.8,application/signed-exchange;v=b3;q=0.7'
    ),
}

SAFARI_OBJECT = PageExpression(
    "{pushNotification: {toString() { return '[object SafariRemoteNotification]'; }, "
    "permission: () => 'default', requestPermission: () => {}}}"
)
CHROME_OBJECT = PageExpression(
    "{runtime: {}, app: {isInstalled: false}, csi: () => {}, loadTimes: () => {}}"
)


Launcher = Callable[[BrowserFamily, bool], Awaitable[Any]]


def family_headers(identity: SessionIdentity) -> Dict[str, str]:
    """Headers matching the real-world signature of the identity's family."""
    headers = dict(identity.headers)
    headers['Accept'] = FAMILY_ACCEPT[identity.family]

    if identity.family == BrowserFamily.CHROME:
        major = identity.browser_version.split('.')[0]
        headers['sec-ch-ua'] = f'"Not_A Brand";v="8", "Chromium";v="{major}", "Google Chrome";v="{major}"'
        headers['sec-ch-ua-mobile'] = '?0'
        headers['sec-ch-ua-platform'] = '"macOS"' if identity.os_name == 'macos' else '"Windows"'
    else:
        # Client hints are Chromium-only
        for name in [h for h in headers if h.lower().startswith('sec-ch-ua')]:
            del headers[name]

    return headers


def family_patch(identity: SessionIdentity) -> PatchSet:
    """Property overrides that make the page look like the identity's family."""
    family = identity.family
    if family == BrowserFamily.SAFARI:
        return PatchSet(
            properties={
                'navigator': {'vendor': 'Apple Computer, Inc.'},
                'window': {'safari': SAFARI_OBJECT},
            },
            removals=[
                ('window', 'chrome'),
                ('navigator', 'webkitTemporaryStorage'),
                ('navigator', 'webkitPersistentStorage'),
            ],
        )

    if family == BrowserFamily.FIREFOX:
        oscpu = 'Intel Mac OS X 10.15' if identity.os_name == 'macos' else 'Windows NT 10.0; Win64; x64'
        return PatchSet(
            properties={
                'navigator': {
                    'vendor': '',
                    'buildID': '20181001000000',
                    'oscpu': oscpu,
                },
            },
            removals=[
                ('window', 'chrome'),
                ('window', 'safari'),
                ('navigator', 'webkitTemporaryStorage'),
                ('navigator', 'webkitPersistentStorage'),
            ],
        )

    return PatchSet(
        properties={
            'navigator': {'vendor': 'Google Inc.'},
            'window': {'chrome': CHROME_OBJECT},
        },
        removals=[('window', 'safari')],
    )


def _js(value: Any) -> str:
    if isinstance(value, PageExpression):
        return str(value)
    if value is None:
        return 'undefined'
    return json.dumps(value)


def render_patch_set(patch_set: PatchSet) -> str:
    """Render a PatchSet as a self-contained init script."""
    lines: List[str] = []

    for target, name in patch_set.removals:
        lines.append(f"try {{ delete {target}[{json.dumps(name)}]; }} catch (e) {{}}")

    for target, props in patch_set.properties.items():
        for name, value in props.items():
            lines.append(
                f"try {{ Object.defineProperty({target}, {json.dumps(name)}, "
                f"{{get: () => ({_js(value)}), configurable: true}}); }} catch (e) {{}}"
            )

    if patch_set.webgl is not None:
        vendor, renderer = patch_set.webgl
        lines.append(f"""
for (const proto of [window.WebGLRenderingContext, window.WebGL2RenderingContext]) {{
  if (!proto) continue;
  const getParameter = proto.prototype.getParameter;
  proto.prototype.getParameter = function (parameter) {{
    if (parameter === 37445) return {json.dumps(vendor)};
    if (parameter === 37446) return {json.dumps(renderer)};
    return getParameter.call(this, parameter);
  }};
}}""")

    if patch_set.canvas_noise is not None:
        lines.append(f"""
const toDataURL = HTMLCanvasElement.prototype.toDataURL;
HTMLCanvasElement.prototype.toDataURL = function (...args) {{
  try {{
    const ctx = this.getContext('2d');
    if (ctx && this.width && this.height) {{
      ctx.fillStyle = `rgba(${{Math.floor(Math.random() * 255)}}, ${{Math.floor(Math.random() * 255)}}, ${{Math.floor(Math.random() * 255)}}, ${{{patch_set.canvas_noise} * Math.random()}})`;
      ctx.fillRect(Math.floor(Math.random() * this.width), Math.floor(Math.random() * this.height), 1, 1);
    }}
  }} catch (e) {{}}
  return toDataURL.apply(this, args);
}};""")

    if patch_set.audio_noise is not None:
        lines.append(f"""
if (window.AnalyserNode) {{
  const getFloatFrequencyData = AnalyserNode.prototype.getFloatFrequencyData;
  AnalyserNode.prototype.getFloatFrequencyData = function (array) {{
    getFloatFrequencyData.call(this, array);
    for (let i = 0; i < array.length; i++) {{
      array[i] += {patch_set.audio_noise} * (Math.random() - 0.5);
    }}
  }};
}}""")

    if patch_set.clock_skew_ms:
        lines.append(f"""
const dateNow = Date.now;
Date.now = () => dateNow() + ({patch_set.clock_skew_ms});""")

    if patch_set.battery is not None:
        level, charging = patch_set.battery
        lines.append(f"""
if (navigator.getBattery) {{
  navigator.getBattery = () => Promise.resolve({{
    charging: {json.dumps(charging)}, chargingTime: 0, dischargingTime: Infinity, level: {level},
    addEventListener: () => {{}}, removeEventListener: () => {{}},
  }});
}}""")

    body = '\n'.join(lines)
    return f"(() => {{\n{body}\n}})();\n"


async def playwright_launcher(playwright, family: BrowserFamily, headless: bool):
    """Launch the Playwright browser type for a family."""
    browser_type = getattr(playwright, ENGINE_TYPES[family])
    options: Dict[str, Any] = {
        'headless': headless,
        'handle_sigint': False,
        'handle_sigterm': False,
        'handle_sighup': False,
    }
    if family == BrowserFamily.CHROME:
        options['args'] = CHROMIUM_ARGS
    elif family == BrowserFamily.FIREFOX:
        options['firefox_user_prefs'] = FIREFOX_PREFS
    return await browser_type.launch(**options)


class BrowserPool:
    """
    Lazily launched browser engines, one per family.

    Usage:
        pool = BrowserPool(headless=True)
        family = pool.family_for_attempt(attempt)
        browser = await pool.engine_for(family)
        identity = pool.fingerprints.generate(family)
        context = await browser.new_context(**pool.context_options_for(family, attempt, identity))
        await context.add_init_script(pool.fingerprint_script_for(family, attempt, identity))
        ...
        await pool.close_all()
    """

    def __init__(
        self,
        headless: bool = True,
        launcher: Optional[Launcher] = None,
        fingerprints: Optional[FingerprintGenerator] = None,
    ):
        """
        Args:
            headless: Run browsers headless
            launcher: Async callable (family, headless) -> browser. Defaults
                to starting Playwright and launching the family's browser type.
            fingerprints: Identity generator
        """
        self.headless = headless
        self.fingerprints = fingerprints or FingerprintGenerator()
        self._launcher = launcher
        self._playwright = None
        self._engines: Dict[BrowserFamily, Any] = {}
        # One lock per family so a slow launch never blocks another family
        self._locks = {family: asyncio.Lock() for family in BrowserFamily}
        self._playwright_lock = asyncio.Lock()

    @staticmethod
    def family_for_attempt(attempt: int) -> BrowserFamily:
        return family_for_attempt(attempt)

    @property
    def launched(self) -> List[BrowserFamily]:
        return list(self._engines)

    async def _launch(self, family: BrowserFamily):
        if self._launcher is not None:
            return await self._launcher(family, self.headless)

        async with self._playwright_lock:
            if self._playwright is None:
                self._playwright = await async_playwright().start()
        return await playwright_launcher(self._playwright, family, self.headless)

    async def engine_for(self, family: BrowserFamily):
        """
        Get the browser for a family, launching it on first use.

        Concurrent first uses of the same family share one launch. Other
        families launch independently.
        """
        engine = self._engines.get(family)
        if engine is not None:
            return engine

        async with self._locks[family]:
            engine = self._engines.get(family)
            if engine is None:
                logger.info(f"Launching {family.value} engine ({ENGINE_TYPES[family]})...")
                engine = await self._launch(family)
                self._engines[family] = engine
        return engine

    def context_options_for(
        self,
        family: BrowserFamily,
        attempt: int,
        identity: Optional[SessionIdentity] = None,
        extra_headers: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        """
        Browser context options for an attempt.

        Args:
            family: Browser family of the attempt
            attempt: Attempt index
            identity: Identity to use (a fresh one is generated if omitted)
            extra_headers: Retailer specific headers, applied last
        """
        identity = identity or self.fingerprints.generate(family)
        options = identity.context_options()
        headers = family_headers(identity)
        if extra_headers:
            headers.update(extra_headers)
        options['extra_http_headers'] = headers
        if family == BrowserFamily.CHROME:
            options['ignore_https_errors'] = True
        logger.debug(f"Context options for {family.value} attempt {attempt + 1}: {identity.user_agent}")
        return options

    def fingerprint_script_for(
        self,
        family: BrowserFamily,
        attempt: int,
        identity: Optional[SessionIdentity] = None,
    ) -> str:
        """Init script: the identity's base patch set layered with the family overlay."""
        identity = identity or self.fingerprints.generate(family)
        return render_patch_set(identity.patch_set.merged(family_patch(identity)))

    async def close_all(self):
        """
        Close every launched engine.

        Each engine is closed independently; failures are logged and do
        not stop the others from closing.
        """
        engines = list(self._engines.items())
        self._engines.clear()

        for family, engine in engines:
            try:
                await asyncio.wait_for(engine.close(), timeout=CLEANUP_TIMEOUT)
                logger.debug(f"Closed {family.value} engine")
            except asyncio.TimeoutError:
                logger.warning(f"Closing {family.value} engine timed out")
            except Exception as e:
                logger.warning(f"Error closing {family.value} engine: {e}")

        if self._playwright is not None:
            try:
                await asyncio.wait_for(self._playwright.stop(), timeout=CLEANUP_TIMEOUT)
            except asyncio.TimeoutError:
                logger.warning("Playwright stop timed out")
            except Exception as e:
                logger.warning(f"Error stopping playwright: {e}")
            self._playwright = None
