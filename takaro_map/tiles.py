"""On-disk store for map tiles.

Tiles never change once rendered, so they are kept without expiry under
``<root>/<domain>/<server>/<z>/<x>_<y>.png`` and survive restarts.
"""

import asyncio
import logging
import re
import tempfile
from pathlib import Path

logger = logging.getLogger(__name__)

_SAFE_COMPONENT = re.compile(r"^[A-Za-z0-9_.-]+$")


class TileCache:
    def __init__(self, root: Path | str) -> None:
        self.root = Path(root)

    def path_for(self, domain: str, server_id: str, z: int, x: int, y: int) -> Path:
        for component in (domain, server_id):
            if not _SAFE_COMPONENT.match(component) or component in {".", ".."}:
                msg = f"Invalid tile path component: {component!r}"
                raise ValueError(msg)
        return self.root / domain / server_id / str(int(z)) / f"{int(x)}_{int(y)}.png"

    def _safe_path(self, domain: str, server_id: str, z: int, x: int, y: int) -> Path | None:
        try:
            return self.path_for(domain, server_id, z, x, y)
        except ValueError as e:
            logger.debug("Skipping tile disk cache: %s", e)
            return None

    async def read(self, domain: str, server_id: str, z: int, x: int, y: int) -> bytes | None:
        """Cached tile bytes, or None on a miss or when the ids cannot name a file."""
        path = self._safe_path(domain, server_id, z, x, y)
        if path is None:
            return None
        try:
            data = await asyncio.to_thread(path.read_bytes)
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.warning("Failed to read cached tile %s: %s", path, e)
            return None
        logger.debug("Tile cache hit: %s/%s/%s", z, x, y)
        return data

    async def write(
        self, domain: str, server_id: str, z: int, x: int, y: int, data: bytes
    ) -> None:
        path = self._safe_path(domain, server_id, z, x, y)
        if path is None:
            return
        try:
            await asyncio.to_thread(_write_atomic, path, data)
        except OSError as e:
            logger.warning("Failed to cache tile %s: %s", path, e)


def _write_atomic(path: Path, data: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with tempfile.NamedTemporaryFile(dir=path.parent, suffix=".tmp", delete=False) as tmp:
        tmp.write(data)
    Path(tmp.name).replace(path)
