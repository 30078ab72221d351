"""Generation provider executor.

Stub providers stand in for the real image / video / TTS / render backends:
they wait a configurable delay and return deterministic placeholder bytes.
Any provider failure is raised as ProviderError, which the worker treats as
terminal for the job.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from app.core.config import get_settings
from app.core.errors import ProviderError
from app.models.job import Job, JobKind

PROVIDER_NAME = "phork-stub"
MODEL_VERSION = "0.1.0"


@dataclass
class ProviderOutput:
    data: bytes
    asset_type: str
    mime_type: str
    extension: str
    width: int | None = None
    height: int | None = None
    duration_ms: int | None = None
    model: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)


def _placeholder(kind: str, params: dict[str, Any]) -> bytes:
    body = json.dumps({"kind": kind, "params": params}, sort_keys=True, default=str)
    digest = hashlib.sha256(body.encode()).hexdigest()
    return f"PHORK-STUB {kind} {digest}\n{body}\n".encode()


async def _simulate_latency() -> None:
    delay = get_settings().provider_stub_delay_seconds
    if delay > 0:
        await asyncio.sleep(delay)


async def generate_image(params: dict[str, Any]) -> ProviderOutput:
    prompt = params.get("prompt")
    if not prompt:
        raise ProviderError("gen_image requires a prompt")
    await _simulate_latency()
    return ProviderOutput(
        data=_placeholder("gen_image", params),
        asset_type="image",
        mime_type="image/png",
        extension="png",
        width=1280,
        height=720,
        model="stub-gen_image",
    )


async def generate_video(params: dict[str, Any]) -> ProviderOutput:
    prompt = params.get("prompt")
    if not prompt:
        raise ProviderError("gen_video requires a prompt")
    await _simulate_latency()
    duration = int(params.get("duration") or 4000)
    return ProviderOutput(
        data=_placeholder("gen_video", params),
        asset_type="video",
        mime_type="video/mp4",
        extension="mp4",
        width=1280,
        height=720,
        duration_ms=duration,
        model="stub-gen_video",
        metadata={"aspect_ratio": params.get("aspect_ratio", "16:9")},
    )


async def generate_audio(params: dict[str, Any]) -> ProviderOutput:
    text = params.get("text")
    if not text:
        raise ProviderError("gen_audio requires text")
    await _simulate_latency()
    speed = float(params.get("speed") or 1.0)
    # Rough speech length: 60ms per character at 1x, clamped to 1..30s
    duration_s = max(1.0, min(30.0, len(text) * 0.06 / speed))
    return ProviderOutput(
        data=_placeholder("gen_audio", params),
        asset_type="audio",
        mime_type="audio/mpeg",
        extension="mp3",
        duration_ms=round(duration_s * 1000),
        model="stub-gen_audio",
        metadata={"voice": params.get("voice", "default")},
    )


async def render_commit(params: dict[str, Any]) -> ProviderOutput:
    commit_id = params.get("commit_id")
    if not commit_id:
        raise ProviderError("render requires a commit_id")
    await _simulate_latency()
    return ProviderOutput(
        data=_placeholder("render", params),
        asset_type="render",
        mime_type="video/mp4",
        extension="mp4",
        width=1280,
        height=720,
        model="stub-render",
        metadata={"commit_id": str(commit_id)},
    )


PROVIDERS: dict[str, Callable[[dict[str, Any]], Awaitable[ProviderOutput]]] = {
    JobKind.GEN_IMAGE: generate_image,
    JobKind.GEN_VIDEO: generate_video,
    JobKind.GEN_AUDIO: generate_audio,
    JobKind.RENDER: render_commit,
}


async def execute(job: Job) -> ProviderOutput:
    """Run the provider for a job's kind."""
    provider = PROVIDERS.get(job.kind)
    if provider is None:
        raise ProviderError(f"No provider for job kind '{job.kind}'")
    return await provider(dict(job.input or {}))
