"""Shared fixtures: a scripted vision client and image builders."""

import io
import struct
import zlib

import pytest
from PIL import Image

from docvision.core.config import PipelineConfig
from docvision.core.store import MemoryStore
from docvision.cost.model import RunningTotalSink
from docvision.invocation.models import VisionResponse
from docvision.pipeline import VisionPipeline


class ScriptedClient:
    """Plays back a script of responses; the last item repeats forever.

    Items are response text, a VisionResponse, or an exception instance to raise.
    """

    def __init__(self, *script, input_tokens=100, output_tokens=10):
        if not script:
            raise ValueError("Script needs at least one item")
        self.script = list(script)
        self.input_tokens = input_tokens
        self.output_tokens = output_tokens
        self.calls: list[dict] = []

    def invoke(self, image, prompt, model, timeout):
        self.calls.append({"image": image, "prompt": prompt, "model": model, "timeout": timeout})
        item = self.script.pop(0) if len(self.script) > 1 else self.script[0]
        if isinstance(item, Exception):
            raise item
        if isinstance(item, VisionResponse):
            return item
        return VisionResponse(
            text=item,
            model=model,
            input_tokens=self.input_tokens,
            output_tokens=self.output_tokens,
        )

    @property
    def models_called(self) -> list[str]:
        return [c["model"] for c in self.calls]


@pytest.fixture()
def sleeps():
    """Records backoff delays instead of sleeping."""
    return []


@pytest.fixture()
def make_pipeline(sleeps):
    def _make(client, config=None, store=None, sink=None, listener=None):
        return VisionPipeline(
            client=client,
            config=config or PipelineConfig(),
            store=store if store is not None else MemoryStore(),
            sink=sink if sink is not None else RunningTotalSink(),
            sleep=sleeps.append,
            listener=listener,
        )

    return _make


@pytest.fixture()
def make_image():
    """Build encoded image bytes from a solid colour."""

    def _make(color=(200, 30, 30), size=(16, 12), fmt="PNG", **save_kw):
        buf = io.BytesIO()
        Image.new("RGB", size, color).save(buf, format=fmt, **save_kw)
        return buf.getvalue()

    return _make


@pytest.fixture()
def scripted():
    """The ScriptedClient class, for building per-test scripts."""
    return ScriptedClient


@pytest.fixture(scope="session")
def huge_png():
    """20000x20000 all-black 1-bit PNG, past Pillow's decompression-bomb limit.

    Written chunk by chunk with zlib so the pixels are never held decoded.
    """

    def chunk(tag, data):
        crc = zlib.crc32(tag + data) & 0xFFFFFFFF
        return struct.pack(">I", len(data)) + tag + data + struct.pack(">I", crc)

    width = height = 20000
    ihdr = struct.pack(">IIBBBBB", width, height, 1, 0, 0, 0, 0)
    row = b"\x00" * (1 + (width + 7) // 8)
    comp = zlib.compressobj(9)
    idat = b"".join(comp.compress(row) for _ in range(height)) + comp.flush()
    return b"\x89PNG\r\n\x1a\n" + chunk(b"IHDR", ihdr) + chunk(b"IDAT", idat) + chunk(b"IEND", b"")
