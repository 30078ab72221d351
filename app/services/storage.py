"""Local asset storage, sharded by the first two characters of the asset id."""

import asyncio
from pathlib import Path

from app.core.config import get_settings


def asset_path(asset_id: str, extension: str) -> Path:
    root = Path(get_settings().asset_storage_path)
    return root / asset_id[:2] / f"{asset_id}.{extension}"


def _write(path: Path, data: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)


async def save_asset(asset_id: str, data: bytes, extension: str) -> str:
    """Write asset bytes off the event loop; return the storage path."""
    path = asset_path(asset_id, extension)
    await asyncio.to_thread(_write, path, data)
    return str(path)


def asset_exists(storage_path: str) -> bool:
    return Path(storage_path).is_file()


async def delete_asset(storage_path: str) -> None:
    await asyncio.to_thread(Path(storage_path).unlink, missing_ok=True)
