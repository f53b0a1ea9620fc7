"""
WhatsApp Client Configuration

Behaviour options handed to the whatsapp-web.js bridge for every client it
creates, plus discovery of a system browser for Puppeteer.

A system Chrome (or Edge) is preferred over the bridge's bundled Chromium:
the bundled build is the one most often left with a corrupted profile after
a crash.
"""

import logging
import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


DEFAULT_BROWSER_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-accelerated-2d-canvas",
    "--no-first-run",
    "--no-zygote",
    "--disable-gpu",
    "--disable-web-security",
    "--disable-features=IsolateOrigins",
    "--disable-site-isolation-trials",
    "--disable-blink-features=AutomationControlled",
    "--disable-extensions",
    "--disable-background-timer-throttling",
    "--disable-backgrounding-occluded-windows",
    "--disable-renderer-backgrounding",
]


def default_browser_candidates() -> List[str]:
    """Well-known Chrome/Edge install locations for this platform, Chrome first"""
    if sys.platform.startswith("win"):
        local = os.environ.get("LOCALAPPDATA", "")
        program_files = os.environ.get("PROGRAMFILES", r"C:\Program Files")
        program_files_x86 = os.environ.get("PROGRAMFILES(X86)", r"C:\Program Files (x86)")
        candidates = [
            rf"{program_files}\Google\Chrome\Application\chrome.exe",
            rf"{program_files_x86}\Google\Chrome\Application\chrome.exe",
            rf"{local}\Google\Chrome\Application\chrome.exe" if local else "",
            rf"{program_files_x86}\Microsoft\Edge\Application\msedge.exe",
            rf"{program_files}\Microsoft\Edge\Application\msedge.exe",
            rf"{local}\Microsoft\Edge\Application\msedge.exe" if local else "",
        ]
    elif sys.platform == "darwin":
        candidates = [
            "/Applications/Google Chrome.app/Contents/MacOS/Google Chrome",
            "/Applications/Microsoft Edge.app/Contents/MacOS/Microsoft Edge",
        ]
    else:
        candidates = [
            "/usr/bin/google-chrome",
            "/usr/bin/google-chrome-stable",
            "/usr/bin/chromium",
            "/usr/bin/chromium-browser",
            "/usr/bin/microsoft-edge",
        ]
    return [c for c in candidates if c]


def find_browser_executable(candidates: Optional[List[str]] = None) -> Optional[str]:
    """Return the first existing browser executable, or None"""
    for candidate in candidates if candidates is not None else default_browser_candidates():
        if candidate and Path(candidate).exists():
            logger.info(f"Using system browser: {candidate}")
            return candidate
    return None


@dataclass
class ClientOptions:
    """Per-client behaviour configuration for whatsapp-web.js"""
    auth_timeout_ms: int = 120000
    qr_timeout_ms: int = 60000
    restart_on_auth_fail: bool = True
    takeover_on_conflict: bool = False
    takeover_timeout_ms: int = 0

    # Puppeteer
    headless: bool = True
    browser_args: List[str] = field(default_factory=lambda: list(DEFAULT_BROWSER_ARGS))
    executable_path: Optional[str] = None

    def resolve_executable(self) -> Optional[str]:
        """Explicit path wins; otherwise look for a system browser"""
        if self.executable_path:
            return self.executable_path
        found = find_browser_executable()
        if not found:
            logger.warning("No system Chrome/Edge found, bridge will use its bundled Chromium")
        return found

    def to_bridge(self) -> Dict[str, Any]:
        """Options in the shape the Node.js bridge passes to `new Client()`"""
        puppeteer: Dict[str, Any] = {
            "headless": self.headless,
            "args": list(self.browser_args),
            "ignoreDefaultArgs": ["--enable-automation"],
            "defaultViewport": None,
            "handleSIGINT": False,
            "handleSIGTERM": False,
            "handleSIGHUP": False,
        }
        executable = self.resolve_executable()
        if executable:
            puppeteer["executablePath"] = executable

        return {
            "authTimeoutMs": self.auth_timeout_ms,
            "qrTimeoutMs": self.qr_timeout_ms,
            "restartOnAuthFail": self.restart_on_auth_fail,
            "takeoverOnConflict": self.takeover_on_conflict,
            "takeoverTimeoutMs": self.takeover_timeout_ms,
            "puppeteer": puppeteer,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ClientOptions":
        return cls(
            auth_timeout_ms=data.get("auth_timeout_ms", 120000),
            qr_timeout_ms=data.get("qr_timeout_ms", 60000),
            restart_on_auth_fail=data.get("restart_on_auth_fail", True),
            takeover_on_conflict=data.get("takeover_on_conflict", False),
            takeover_timeout_ms=data.get("takeover_timeout_ms", 0),
            headless=data.get("headless", True),
            browser_args=data.get("browser_args") or list(DEFAULT_BROWSER_ARGS),
            executable_path=data.get("executable_path"),
        )
