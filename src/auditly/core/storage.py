"""
Screenshot storage shared by the structural analyzer, the visual reviewer and
the artifact route of the web app.
"""

import re
import uuid
from datetime import datetime
from pathlib import Path
from typing import Optional, Union
from urllib.parse import parse_qs, urlparse

import structlog


_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9.-]+")


class ScreenshotStore:
    """
    Directory of PNG screenshots addressed by plain file names.

    Names are derived from the audited host, a millisecond timestamp and a
    random suffix so that concurrent audits of the same site never collide.
    Locators handed to clients point at the artifact route
    (``/audit?filename=<name>``).

    Example:
        >>> store = ScreenshotStore("screenshots")
        >>> name = store.new_name("https://example.com", "viewport")
        >>> store.locator(name)
        '/audit?filename=example.com-...-viewport.png'
    """

    def __init__(self, directory: Union[str, Path], route: str = "/audit"):
        self.directory = Path(directory)
        self.route = route
        self.logger = structlog.get_logger(__name__)

    def ensure_directory(self) -> Path:
        self.directory.mkdir(parents=True, exist_ok=True)
        return self.directory

    def new_name(self, url: str, kind: str) -> str:
        host = urlparse(url).hostname or "site"
        host = _UNSAFE_CHARS.sub("-", host)
        stamp = datetime.now().strftime("%Y%m%d%H%M%S%f")[:-3]
        return f"{host}-{stamp}-{uuid.uuid4().hex[:8]}-{kind}.png"

    def path_for(self, name: str) -> Path:
        """
        Resolve a file name inside the store.

        Raises:
            ValueError: If the name is not a plain file name
        """
        if not name or name != Path(name).name or name in (".", ".."):
            raise ValueError(f"Invalid screenshot name: {name!r}")
        return self.directory / name

    def locator(self, name: str) -> str:
        return f"{self.route}?filename={name}"

    def name_from_locator(self, locator: str) -> Optional[str]:
        """Extract the file name from a locator, or None if it has none"""
        values = parse_qs(urlparse(locator).query).get("filename")
        if values:
            return values[0]
        return None

    def read(self, name: str) -> Optional[bytes]:
        """Return screenshot bytes, or None if missing or not addressable"""
        try:
            path = self.path_for(name)
        except ValueError:
            self.logger.warning("screenshot_name_rejected", name=name)
            return None

        if not path.is_file():
            return None
        return path.read_bytes()

    def read_locator(self, locator: str) -> Optional[bytes]:
        name = self.name_from_locator(locator)
        if name is None:
            return None
        return self.read(name)
