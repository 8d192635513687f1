import argparse
import struct
import subprocess
import sys
from collections.abc import Callable
from pathlib import Path

import pytest

GENERATOR_DIR = Path(__file__).resolve().parent.parent
if str(GENERATOR_DIR) not in sys.path:
    sys.path.insert(0, str(GENERATOR_DIR))

import shadergen  # noqa: E402


GUI_SPEC = """\
// GUI overlay fragment shader
path: "gui.frag",
kind: "fragment",
input: [
    { format: R32G32Sfloat, name: "position" },
    { format: R32G32B32A32Sfloat, name: "color" },
],
output: [
    { format: R32G32B32A32Sfloat, name: "out_color" },
],
push_constants: {
    name: PushConstants,
    ranges: [(color, 4), (scale, 2)],
},
descriptors: [
    {
        name: Globals,
        ty: Buffer,
        data: [(view, "mat4"), (tint, "vec3"), (alpha, "float")],
        binding: 0,
        set: 0,
    },
    { name: atlas, ty: SampledImage, binding: 1, set: 0 },
],
"""

FAKE_SPIRV_WORDS = (shadergen.SPIRV_MAGIC, 0x00010000, 0x00080001, 0x0000000D, 0x00000000)


@pytest.fixture
def gui_spec_text() -> str:
    return GUI_SPEC


@pytest.fixture
def write_spec(tmp_path: Path) -> Callable[..., Path]:
    """Write a spec file plus a dummy GLSL source next to it."""

    def _write_spec(
        text: str = GUI_SPEC,
        *,
        name: str = "gui.twshader",
        source_name: str | None = "gui.frag",
    ) -> Path:
        spec_path = tmp_path / name
        spec_path.write_text(text, encoding="utf-8")
        if source_name is not None:
            (tmp_path / source_name).write_text(
                "#version 450\nvoid main() {}\n", encoding="utf-8"
            )
        return spec_path

    return _write_spec


@pytest.fixture
def make_args(tmp_path: Path, write_spec: Callable[..., Path]) -> Callable[..., argparse.Namespace]:
    def _make_args(**overrides: object) -> argparse.Namespace:
        base_args: dict[str, object] = {
            "specs": [write_spec()],
            "output_dir": tmp_path / "out",
            "compiler": None,
            "skip_compile": True,
            "order": shadergen.ORDER_REVERSE,
            "collision_policy": shadergen.COLLISION_OVERRIDE,
            "jobs": None,
            "inspect": False,
        }
        base_args.update(overrides)
        return argparse.Namespace(**base_args)

    return _make_args


@pytest.fixture
def fake_compiler(monkeypatch: pytest.MonkeyPatch) -> list[list[str]]:
    """Replace subprocess.run with a compiler that writes FAKE_SPIRV_WORDS.

    Returns the list of recorded command lines.
    """
    calls: list[list[str]] = []

    def _fake_run(cmd: list[str], **kwargs: object) -> subprocess.CompletedProcess[str]:
        calls.append(list(cmd))
        output = Path(cmd[cmd.index("-o") + 1])
        output.write_bytes(struct.pack(f"<{len(FAKE_SPIRV_WORDS)}I", *FAKE_SPIRV_WORDS))
        return subprocess.CompletedProcess(cmd, 0, stdout="", stderr="")

    monkeypatch.setattr(shadergen.subprocess, "run", _fake_run)
    return calls
