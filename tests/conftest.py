import argparse
import os
import sys
from collections.abc import Callable
from pathlib import Path

import pytest

GENERATOR_DIR = Path(__file__).resolve().parent.parent
if str(GENERATOR_DIR) not in sys.path:
    sys.path.insert(0, str(GENERATOR_DIR))

import vimba_bindgen  # noqa: E402

FAKE_BINDINGS_BODY = "pub const VmbErrorSuccess: VmbError_t = 0;\n"

_FAKE_BINDGEN_SOURCE = """\
#!{python}
import sys

args = sys.argv[1:]
exit_code = {exit_code}
if exit_code:
    sys.stderr.write("fake bindgen: failing on purpose\\n")
    sys.exit(exit_code)

header = args[0]
sys.stdout.write("fake bindgen: generating\\n")
output = args[args.index("-o") + 1]
raw_lines = [args[i + 1] for i, arg in enumerate(args) if arg == "--raw-line"]
with open(output, "w", encoding="utf-8") as handle:
    for line in raw_lines:
        handle.write(line + "\\n")
    handle.write("// header: " + header + "\\n")
    handle.write({body!r})
"""


@pytest.fixture
def sdk_layout(tmp_path: Path) -> dict[str, Path]:
    include_dir = tmp_path / "Vimba_6_0" / "VimbaC" / "Include"
    include_dir.mkdir(parents=True)
    header = include_dir / vimba_bindgen.HEADER_FILENAME
    header.write_text("typedef int VmbError_t;\n", encoding="utf-8")

    library_dir = tmp_path / "Vimba_6_0" / "VimbaC" / "DynamicLib" / "x86_64bit"
    library_dir.mkdir(parents=True)

    crate_dir = tmp_path / "crate"
    crate_dir.mkdir()
    return {
        "include_dir": include_dir,
        "header": header,
        "library_dir": library_dir,
        "output_path": crate_dir / "src" / "vimba_sys.rs",
        "sidecar_path": crate_dir / "libdir",
    }


@pytest.fixture
def make_args(sdk_layout: dict[str, Path]) -> Callable[..., argparse.Namespace]:
    def _make_args(**overrides: object) -> argparse.Namespace:
        base_args: dict[str, object] = {
            "include_dir": sdk_layout["include_dir"],
            "library_dir": str(sdk_layout["library_dir"]),
            "output": sdk_layout["output_path"],
            "sidecar": sdk_layout["sidecar_path"],
            "bindgen": vimba_bindgen.DEFAULT_BINDGEN,
            "check_library_dir": False,
            "show_config": False,
        }
        base_args.update(overrides)
        return argparse.Namespace(**base_args)

    return _make_args


@pytest.fixture
def make_fake_bindgen(tmp_path: Path) -> Callable[..., Path]:
    """Write an executable stand-in for bindgen into tmp_path.

    The script echoes the raw lines and header path into the -o file, or
    exits with exit_code when it is non-zero.
    """
    if sys.platform == "win32":
        pytest.skip("fake bindgen relies on a shebang line")

    def _make_fake_bindgen(exit_code: int = 0, name: str = "bindgen") -> Path:
        bin_dir = tmp_path / "bin"
        bin_dir.mkdir(exist_ok=True)
        script = bin_dir / name
        script.write_text(
            _FAKE_BINDGEN_SOURCE.format(
                python=sys.executable,
                exit_code=exit_code,
                body=FAKE_BINDINGS_BODY,
            ),
            encoding="utf-8",
        )
        os.chmod(script, 0o755)
        return script

    return _make_fake_bindgen
