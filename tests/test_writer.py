from __future__ import annotations

import importlib.util
import sys
from pathlib import Path
from types import ModuleType

import pytest

import shadergen


def _make_write_config(
    *,
    spec_name: str = "gui.twshader",
    source_path: str = "gui.frag",
    stage: str = "fragment",
    compiled: bool = True,
) -> shadergen.WriteConfig:
    return shadergen.WriteConfig(
        spec_name=spec_name, source_path=source_path, stage=stage, compiled=compiled
    )


def _make_module_spec(
    *,
    filename: str = "gui.py",
    stdlib_imports: tuple[shadergen.ImportSpec, ...] = (),
    project_imports: tuple[shadergen.ImportSpec, ...] = (),
    content_lines: tuple[str, ...] = (),
) -> shadergen.ModuleSpec:
    return shadergen.ModuleSpec(
        filename=filename,
        stdlib_imports=stdlib_imports,
        project_imports=project_imports,
        content_lines=content_lines,
    )


def _load_module(path: Path, name: str) -> ModuleType:
    spec = importlib.util.spec_from_file_location(name, path)
    assert spec is not None and spec.loader is not None
    module = importlib.util.module_from_spec(spec)
    sys.modules[name] = module
    try:
        spec.loader.exec_module(module)
    finally:
        del sys.modules[name]
    return module


def test_format_file_header_boxes_metadata() -> None:
    lines = shadergen.format_file_header(_make_write_config())

    assert lines[0] == lines[-1] == "# x-------------------------------------------x #"
    assert lines[1] == "# | Shader interface for gui.frag (fragment)"
    assert lines[2] == f"# | Generated by shadergen {shadergen.__version__} -- do not edit"
    assert lines[3] == "# | Source: gui.twshader"
    assert len(lines) == 5


def test_format_file_header_marks_skipped_compile() -> None:
    lines = shadergen.format_file_header(_make_write_config(compiled=False))

    assert "# | SPIR-V: not compiled (--skip-compile)" in lines


def test_format_file_header_requires_spec_name() -> None:
    with pytest.raises(ValueError):
        shadergen.format_file_header(_make_write_config(spec_name=""))


def test_format_import_block_groups() -> None:
    lines = shadergen.format_import_block(
        (shadergen.ImportSpec("ctypes"),),
        (shadergen.ImportSpec("shadergen", ("InterfaceDef", "PipelineLayout")),),
    )

    assert lines == [
        "import ctypes",
        "",
        "from shadergen import InterfaceDef, PipelineLayout",
    ]


def test_format_import_block_single_group_has_no_blank() -> None:
    lines = shadergen.format_import_block((), (shadergen.ImportSpec("shadergen", ("A",)),))

    assert lines == ["from shadergen import A"]
    assert shadergen.format_import_block((), ()) == []


def test_format_import_wraps_long_name_lists() -> None:
    names = tuple(f"VeryLongGeneratedName{index}" for index in range(6))

    lines = shadergen.format_import(shadergen.ImportSpec("shadergen", names))

    assert lines[0] == "from shadergen import ("
    assert lines[-1] == ")"
    assert lines[1:-1] == [f"    {name}," for name in names]


def test_assemble_module_source_layout() -> None:
    source = shadergen.assemble_module_source(
        _make_write_config(),
        _make_module_spec(
            stdlib_imports=(shadergen.ImportSpec("ctypes"),),
            content_lines=("STAGE = \"fragment\"",),
        ),
    )

    lines = source.split("\n")
    assert lines[5] == ""
    assert lines[6] == "import ctypes"
    assert lines[7] == ""
    assert lines[8] == 'STAGE = "fragment"'
    assert source.endswith("\n")
    assert not source.endswith("\n\n")


@pytest.mark.parametrize("filename", ["", "gui.txt", "gui"])
def test_assemble_module_source_rejects_bad_filename(filename: str) -> None:
    with pytest.raises(ValueError):
        shadergen.assemble_module_source(
            _make_write_config(), _make_module_spec(filename=filename)
        )


def test_assemble_init_source_imports_modules() -> None:
    source = shadergen.assemble_init_source(shadergen.InitModuleSpec(("gui", "scene")))

    assert "from . import gui, scene\n" in source
    assert '__all__ = ["gui", "scene"]\n' in source


def test_write_module_creates_directory_and_reports_counts(tmp_path: Path) -> None:
    output_dir = tmp_path / "nested" / "out"

    result = shadergen.write_module(
        output_dir, _make_write_config(), _make_module_spec(content_lines=("X = 1",))
    )

    written = (output_dir / "gui.py").read_text(encoding="utf-8")
    assert result.filename == "gui.py"
    assert result.path == (output_dir / "gui.py").resolve()
    assert result.line_count == written.count("\n")
    assert result.byte_count == len(written.encode("utf-8"))


def test_write_package_writes_init_last(tmp_path: Path) -> None:
    modules = (
        (_make_write_config(), _make_module_spec(filename="gui.py")),
        (_make_write_config(spec_name="scene.twshader"), _make_module_spec(filename="scene.py")),
    )

    result = shadergen.write_package(
        tmp_path, modules, shadergen.InitModuleSpec(("gui", "scene"))
    )

    assert [f.filename for f in result.files] == ["gui.py", "scene.py", "__init__.py"]
    assert result.total_lines == sum(f.line_count for f in result.files)


def test_format_spirv_words_wraps_eight_per_line() -> None:
    lines = shadergen.format_spirv_words(tuple(range(10)))

    assert lines[0] == "SPIRV_WORDS: tuple[int, ...] = ("
    assert lines[1].count("0x") == 8
    assert lines[2] == "    0x00000008, 0x00000009,"
    assert lines[-1] == ")"
    assert shadergen.format_spirv_words(()) == ["SPIRV_WORDS: tuple[int, ...] = ()"]


@pytest.mark.parametrize(
    ("shape", "expected"),
    [
        ((), "ctypes.c_float"),
        ((4,), "ctypes.c_float * 4"),
        ((3, 3), "(ctypes.c_float * 3) * 3"),
    ],
)
def test_format_ctypes_type(shape: tuple[int, ...], expected: str) -> None:
    assert shadergen.format_ctypes_type(shape) == expected


def _generated_gui_module(
    gui_spec_text: str, tmp_path: Path, words: tuple[int, ...] = ()
) -> tuple[str, shadergen.CompiledShader]:
    spec = shadergen.parse_shader_specification(gui_spec_text)
    compiled = shadergen.compile_shader(spec)
    loaded = shadergen.LoadedSpecification(
        spec_path=tmp_path / "gui.twshader",
        module_name="gui",
        spec=spec,
        source_file=tmp_path / "gui.frag",
    )
    build = shadergen.ShaderBuild(loaded=loaded, compiled=compiled, words=words)
    config, module_spec = shadergen.build_module_spec(build, shadergen.ORDER_REVERSE)
    return shadergen.assemble_module_source(config, module_spec), compiled


def test_generated_module_round_trips_layout(gui_spec_text: str, tmp_path: Path) -> None:
    source, compiled = _generated_gui_module(gui_spec_text, tmp_path, words=(0x07230203, 1))
    path = tmp_path / "gui_generated.py"
    path.write_text(source, encoding="utf-8")

    module = _load_module(path, "gui_generated")

    assert module.STAGE == "fragment"
    assert module.STAGE_MASK == shadergen.STAGE_FRAGMENT
    assert module.SPIRV_WORDS == (0x07230203, 1)
    assert module.SOURCE_PATH == "gui.frag"
    assert module.MAIN_LAYOUT == shadergen.PipelineLayout(compiled.layout)
    assert module.MAIN_INPUT == shadergen.InterfaceDef(compiled.inputs, "reverse")
    assert module.MAIN_OUTPUT == shadergen.InterfaceDef(compiled.outputs, "reverse")
    assert [e.name for e in module.MAIN_INPUT] == ["color", "position"]


def test_generated_module_record_classes(gui_spec_text: str, tmp_path: Path) -> None:
    import ctypes

    source, compiled = _generated_gui_module(gui_spec_text, tmp_path)
    path = tmp_path / "gui_records.py"
    path.write_text(source, encoding="utf-8")

    module = _load_module(path, "gui_records")

    for schema in compiled.records:
        record_type = getattr(module, schema.name)
        assert issubclass(record_type, ctypes.LittleEndianStructure)
        assert ctypes.sizeof(record_type) == schema.size
        assert [name for name, _ in record_type._fields_] == [f.name for f in schema.fields]


def test_generated_module_recompile_uses_source_file(
    gui_spec_text: str,
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    source, _ = _generated_gui_module(gui_spec_text, tmp_path)
    path = tmp_path / "gui_recompile.py"
    path.write_text(source, encoding="utf-8")
    module = _load_module(path, "gui_recompile")
    calls: list[tuple[object, ...]] = []

    def _fake_compile(*args: object) -> tuple[int, ...]:
        calls.append(args)
        return (shadergen.SPIRV_MAGIC,)

    monkeypatch.setattr(module, "compile_file_to_bytecode", _fake_compile)

    assert module.recompile("glslc-x") == (shadergen.SPIRV_MAGIC,)
    assert calls == [(str(tmp_path / "gui.frag"), "fragment", "glslc-x")]


def test_generated_module_without_records_skips_ctypes(tmp_path: Path) -> None:
    spec = shadergen.parse_shader_specification('path: "p.vert", kind: "vertex"')
    loaded = shadergen.LoadedSpecification(
        spec_path=tmp_path / "p.twshader",
        module_name="p",
        spec=spec,
        source_file=tmp_path / "p.vert",
    )
    build = shadergen.ShaderBuild(loaded, shadergen.compile_shader(spec), ())

    config, module_spec = shadergen.build_module_spec(build, shadergen.ORDER_FORWARD)

    assert module_spec.stdlib_imports == ()
    assert config.compiled is False
    assert "MAIN_INPUT = InterfaceDef((), order=\"forward\")" in module_spec.content_lines
    assert module_spec.project_imports[0].names == (
        "CompiledLayout",
        "InterfaceDef",
        "PipelineLayout",
        "compile_file_to_bytecode",
    )



def _spec_with_records(push_constant_name: str, *buffer_names: str) -> str:
    descriptors = ", ".join(
        f'{{ name: {name}, ty: Buffer, data: [(v, "vec4")], binding: {index}, set: 0 }}'
        for index, name in enumerate(buffer_names)
    )
    return (
        'path: "p.frag", kind: "fragment",'
        f" push_constants: {{ name: {push_constant_name}, ranges: [(a, 1)] }},"
        f" descriptors: [{descriptors}]"
    )


@pytest.mark.parametrize("name", sorted(shadergen.GENERATED_MODULE_NAMES))
def test_record_names_cannot_shadow_generated_module_names(name: str) -> None:
    with pytest.raises(shadergen.ReservedRecordNameError) as exc_info:
        shadergen.parse_shader_specification(_spec_with_records("PushConstants", name))

    assert exc_info.value.code == "RESERVED_RECORD_NAME"
    assert exc_info.value.name == name


def test_push_constant_name_cannot_shadow_runtime_import() -> None:
    with pytest.raises(shadergen.ReservedRecordNameError):
        shadergen.parse_shader_specification(_spec_with_records("PushConstantRange"))


def test_record_names_collide_after_keyword_escaping() -> None:
    with pytest.raises(shadergen.DuplicateRecordError) as exc_info:
        shadergen.parse_shader_specification(_spec_with_records("class", "class_"))

    assert exc_info.value.name == "class_"


def test_generated_module_binds_only_reserved_and_record_names(
    gui_spec_text: str, tmp_path: Path
) -> None:
    source, compiled = _generated_gui_module(gui_spec_text, tmp_path)
    path = tmp_path / "gui_names.py"
    path.write_text(source, encoding="utf-8")

    module = _load_module(path, "gui_names")

    bound = {name for name in vars(module) if not name.startswith("__")}
    records = {shadergen.python_identifier(r.name) for r in compiled.records}
    assert bound - records == set(shadergen.GENERATED_MODULE_NAMES)


def test_keyword_record_name_generates_importable_module(tmp_path: Path) -> None:
    spec = shadergen.parse_shader_specification(_spec_with_records("class", "Lights"))
    loaded = shadergen.LoadedSpecification(
        spec_path=tmp_path / "p.twshader",
        module_name="p",
        spec=spec,
        source_file=tmp_path / "p.frag",
    )
    build = shadergen.ShaderBuild(loaded, shadergen.compile_shader(spec), ())
    config, module_spec = shadergen.build_module_spec(build, shadergen.ORDER_REVERSE)
    path = tmp_path / "keyword_records.py"
    path.write_text(shadergen.assemble_module_source(config, module_spec), encoding="utf-8")

    module = _load_module(path, "keyword_records")

    assert module.class_.__name__ == "class_"
    assert module.Lights.v.size == 16
