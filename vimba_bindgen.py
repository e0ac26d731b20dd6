"""Vimba C FFI bindings generator driver.

Resolves the Vimba C SDK header, records the dynamic library directory for
build.rs and runs bindgen to produce src/vimba_sys.rs.

Usage:
    python vimba_bindgen.py
    python vimba_bindgen.py --include-dir /opt/Vimba_6_0/VimbaC/Include \\
        --library-dir /opt/Vimba_6_0/VimbaC/DynamicLib/x86_64bit
"""

import argparse
import os
import shlex
import signal
import subprocess
import sys
from dataclasses import dataclass
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parent
DEFAULT_VIMBA_ROOT = Path.home() / "Vimba_6_0" / "VimbaC"
DEFAULT_INCLUDE_DIR = DEFAULT_VIMBA_ROOT / "Include"
DEFAULT_LIBRARY_DIR = str(DEFAULT_VIMBA_ROOT / "DynamicLib" / "x86_64bit")
DEFAULT_OUTPUT_PATH = PROJECT_ROOT / "src" / "vimba_sys.rs"
DEFAULT_SIDECAR_PATH = PROJECT_ROOT / "libdir"
DEFAULT_BINDGEN = "bindgen"

HEADER_FILENAME = "VimbaC.h"
LIBRARY_NAME = "VimbaC"
LIBRARY_FILENAMES: tuple[str, ...] = (
    f"lib{LIBRARY_NAME}.so",
    f"lib{LIBRARY_NAME}.dylib",
    f"{LIBRARY_NAME}.dll",
)

EXIT_CONFIG_ERROR = 1
# Shell conventions for a command that cannot be run.
EXIT_COMMAND_NOT_EXECUTABLE = 126
EXIT_COMMAND_NOT_FOUND = 127


def _printable(text: str) -> str:
    """Replace undecodable path bytes (surrogate escapes) with \\xNN."""
    return text.encode("utf-8", "surrogateescape").decode("utf-8", "backslashreplace")


# ===--- CLI config contracts ---=== #


@dataclass(frozen=True)
class SDKLocation:
    """Where the deployer installed the Vimba C SDK.

    library_dir stays a plain string: it is persisted verbatim, so it must
    not go through Path normalisation (trailing slashes, "." segments).
    """

    include_dir: Path
    library_dir: str


@dataclass(frozen=True)
class PipelineConfig:
    sdk: SDKLocation
    output_path: Path
    sidecar_path: Path
    bindgen: str
    check_library_dir: bool
    show_config: bool


VALID_ERROR_CODES = {
    "HEADER_NOT_FOUND",
    "LIBRARY_DIR_NOT_FOUND",
    "LIBRARY_NOT_FOUND",
    "INVALID_GENERATOR",
}


class ConfigError(Exception):
    def __init__(self, code: str, message: str, suggestion: str | None = None):
        if code not in VALID_ERROR_CODES:
            raise ValueError(f"Unknown config error code: {code}")
        super().__init__(message)
        self.code = code
        self.message = message
        self.suggestion = suggestion


class GeneratorError(Exception):
    """The external binding generator failed; exit_code is surfaced as-is."""

    def __init__(self, exit_code: int, message: str):
        super().__init__(message)
        self.exit_code = exit_code
        self.message = message


def build_argument_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Generate Rust FFI bindings for the Vimba C SDK"
    )

    parser.add_argument("--include-dir", type=Path, default=DEFAULT_INCLUDE_DIR)
    parser.add_argument("--library-dir", type=str, default=DEFAULT_LIBRARY_DIR)
    parser.add_argument("--output", type=Path, default=DEFAULT_OUTPUT_PATH)
    parser.add_argument("--sidecar", type=Path, default=DEFAULT_SIDECAR_PATH)
    parser.add_argument("--bindgen", type=str, default=DEFAULT_BINDGEN)
    parser.add_argument(
        "--check-library-dir", action="store_true", default=False
    )
    parser.add_argument("--show-config", action="store_true", default=False)

    return parser


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = build_argument_parser()
    return parser.parse_args(argv)


def validate_config(args: argparse.Namespace) -> PipelineConfig:
    """Turn parsed arguments into a PipelineConfig.

    Paths are not checked here; run_pipeline resolves the header as its
    first stage.
    """
    bindgen = args.bindgen.strip()
    if not bindgen:
        raise ConfigError(
            "INVALID_GENERATOR",
            "--bindgen must name an executable.",
            "Install it with `cargo install bindgen-cli` or pass --bindgen /path/to/bindgen.",
        )

    return PipelineConfig(
        sdk=SDKLocation(
            include_dir=Path(args.include_dir),
            library_dir=args.library_dir,
        ),
        output_path=Path(args.output),
        sidecar_path=Path(args.sidecar),
        bindgen=bindgen,
        check_library_dir=bool(args.check_library_dir),
        show_config=bool(args.show_config),
    )


def build_config(argv: list[str] | None = None) -> PipelineConfig:
    return validate_config(parse_args(argv))


# ===--- S1 Path resolver ---=== #


@dataclass(frozen=True)
class HeaderReference:
    """Canonical absolute path of a header confirmed to exist."""

    path: Path


def resolve_header(
    include_dir: Path, header_name: str = HEADER_FILENAME
) -> HeaderReference:
    """Resolve <include_dir>/<header_name> to its canonical absolute path.

    Symlinks are followed; the header must exist and be a regular file.

    Raises:
        ConfigError: HEADER_NOT_FOUND when the directory or header is
            missing, a symlink loops, or the path is not a file.
    """
    candidate = Path(include_dir) / header_name
    not_found = ConfigError(
        "HEADER_NOT_FOUND",
        f"{header_name} in directory '{include_dir}' couldn't be found",
        "Install the Vimba SDK or pass --include-dir /path/to/VimbaC/Include",
    )
    try:
        resolved = candidate.resolve(strict=True)
    except (OSError, RuntimeError) as err:
        # RuntimeError: symlink loop on Python < 3.13.
        raise not_found from err
    if not resolved.is_file():
        raise not_found
    return HeaderReference(path=resolved)


def validate_library_dir(library_dir: str) -> Path:
    """Opt-in check that library_dir holds a loadable Vimba C library.

    Only runs under --check-library-dir. The persisted sidecar content is
    unaffected: it is still the literal library_dir string.
    """
    path = Path(library_dir)
    if not path.is_dir():
        raise ConfigError(
            "LIBRARY_DIR_NOT_FOUND",
            f"Library directory does not exist: {library_dir}",
            "Pass --library-dir pointing at VimbaC/DynamicLib/<arch>.",
        )
    if not any((path / name).is_file() for name in LIBRARY_FILENAMES):
        raise ConfigError(
            "LIBRARY_NOT_FOUND",
            f"No {LIBRARY_NAME} library in directory: {library_dir}",
            f"Expected one of: {', '.join(LIBRARY_FILENAMES)}.",
        )
    return path


# ===--- S2 Generator configuration ---=== #

ENUM_STYLE_MODULE_CONSTS = "moduleconsts"

# Generated names keep the vendor's C naming, so the matching lints are off.
RAW_LINES: tuple[str, ...] = (
    "#![allow(non_upper_case_globals)]",
    "#![allow(non_snake_case)]",
    "#![allow(non_camel_case_types)]",
    "#![allow(dead_code)]",
)


@dataclass(frozen=True)
class GeneratorConfig:
    """Fixed bindgen policy for the Vimba C header.

    Only output_path varies between runs.

    Attributes:
        enum_style: bindgen --default-enum-style value. Module constants
            leave room for values the SDK adds later.
        derive_partialeq: Emit #[derive(PartialEq)] on generated types.
        derive_default: Emit #[derive(Default)] on generated types.
        distrust_clang_mangling: VimbaC is a C library; ignore clang's
            mangled names.
        raw_lines: Lines prepended verbatim to the generated file.
        output_path: Where bindgen writes the generated Rust source.
    """

    enum_style: str
    derive_partialeq: bool
    derive_default: bool
    distrust_clang_mangling: bool
    raw_lines: tuple[str, ...]
    output_path: Path


def assemble_generator_config(output_path: Path) -> GeneratorConfig:
    return GeneratorConfig(
        enum_style=ENUM_STYLE_MODULE_CONSTS,
        derive_partialeq=True,
        derive_default=True,
        distrust_clang_mangling=True,
        raw_lines=RAW_LINES,
        output_path=Path(output_path),
    )


def build_generator_argv(
    bindgen: str, header: HeaderReference, config: GeneratorConfig
) -> list[str]:
    """Map a GeneratorConfig onto the bindgen command line."""
    argv = [bindgen, str(header.path), "--default-enum-style", config.enum_style]
    if config.derive_partialeq:
        argv.append("--with-derive-partialeq")
    if config.derive_default:
        argv.append("--with-derive-default")
    if config.distrust_clang_mangling:
        argv.append("--distrust-clang-mangling")
    for line in config.raw_lines:
        argv.extend(["--raw-line", line])
    argv.extend(["-o", str(config.output_path)])
    return argv


# ===--- S3 Link metadata writer ---=== #


@dataclass(frozen=True)
class FileWriteResult:
    """Result of writing a single output file.

    Attributes:
        filename: Filename written, e.g. "libdir" or "vimba_sys.rs".
        path: Absolute path of the written file.
        line_count: Number of newline characters in the file.
        byte_count: Number of bytes in the file.
    """

    filename: str
    path: Path
    line_count: int
    byte_count: int


@dataclass(frozen=True)
class LinkDirectoryRecord:
    library_dir: str
    sidecar_path: Path


def describe_written_file(path: Path) -> FileWriteResult:
    resolved = Path(path).resolve()
    file_bytes = resolved.read_bytes()
    return FileWriteResult(
        filename=resolved.name,
        path=resolved,
        line_count=file_bytes.count(b"\n"),
        byte_count=len(file_bytes),
    )


def format_link_directory(library_dir: str) -> str:
    return f"{library_dir}\n"


def format_link_directives(library_dir: str) -> list[str]:
    """Cargo directives build.rs derives from the sidecar content."""
    return [
        "cargo:rerun-if-changed=libdir",
        f"cargo:rustc-link-lib=dylib={LIBRARY_NAME}",
        f"cargo:rustc-link-search=native={library_dir}",
    ]


def persist_link_directory(library_dir: str, sidecar_path: Path) -> FileWriteResult:
    """Overwrite sidecar_path with library_dir and a trailing newline.

    Written as raw bytes: no newline translation on any platform, and a
    library_dir that is not valid UTF-8 keeps its original bytes.
    library_dir is not checked; see validate_library_dir for the opt-in
    check.

    Raises:
        OSError: Propagated directly if the write fails.
    """
    sidecar_path = Path(sidecar_path)
    sidecar_path.write_bytes(os.fsencode(format_link_directory(library_dir)))
    return describe_written_file(sidecar_path)


# ===--- S4 Generator invoker ---=== #


def _shell_exit_code(returncode: int) -> int:
    # subprocess reports death by signal N as -N; shells report 128 + N.
    if returncode < 0:
        return 128 - returncode
    return returncode


def invoke_generator(
    header: HeaderReference,
    config: GeneratorConfig,
    bindgen: str = DEFAULT_BINDGEN,
) -> FileWriteResult:
    """Run bindgen for header and describe the file it produced.

    bindgen's stdout/stderr pass straight through to ours. No retry and
    no cleanup: a crash may leave a partial output file behind.

    Returns:
        FileWriteResult for config.output_path.

    Raises:
        GeneratorError: bindgen is missing (127) or not executable (126),
            exited non-zero (its own code), or was killed by a signal
            (128 + signal number).
        OSError: The output directory cannot be created or the generated
            file cannot be read back.
    """
    argv = build_generator_argv(bindgen, header, config)
    config.output_path.parent.mkdir(parents=True, exist_ok=True)
    print(_printable(f"  Running: {shlex.join(argv)}"), flush=True)

    try:
        completed = subprocess.run(argv, check=False)
    except FileNotFoundError as err:
        raise GeneratorError(
            EXIT_COMMAND_NOT_FOUND,
            f"Binding generator '{bindgen}' could not be executed: {err}",
        ) from err
    except PermissionError as err:
        raise GeneratorError(
            EXIT_COMMAND_NOT_EXECUTABLE,
            f"Binding generator '{bindgen}' could not be executed: {err}",
        ) from err

    if completed.returncode != 0:
        exit_code = _shell_exit_code(completed.returncode)
        if completed.returncode < 0:
            try:
                reason = f"killed by {signal.Signals(-completed.returncode).name}"
            except ValueError:
                reason = f"killed by signal {-completed.returncode}"
        else:
            reason = f"exited with code {completed.returncode}"
        raise GeneratorError(exit_code, f"{bindgen} {reason}")

    return describe_written_file(config.output_path)


# ===--- S5 Pipeline ---=== #


@dataclass(frozen=True)
class PipelineResult:
    """Everything one successful run produced.

    Attributes:
        header: Resolved VimbaC.h.
        link_record: Library directory and the sidecar it went to.
        sidecar: Write result for the sidecar file.
        bindings: Write result for the generated Rust source.
    """

    header: HeaderReference
    link_record: LinkDirectoryRecord
    sidecar: FileWriteResult
    bindings: FileWriteResult


def run_pipeline(config: PipelineConfig) -> PipelineResult:
    """Resolve the header, write the sidecar, then run bindgen.

    Stage order is fixed: nothing is written until the header resolves.
    The sidecar is written before bindgen runs and is left in place if
    bindgen fails.

    Raises:
        ConfigError: Header missing, or --check-library-dir failed.
        GeneratorError: bindgen failed.
        OSError: Filesystem write failure.
    """
    print(_printable(f"Resolving: {config.sdk.include_dir / HEADER_FILENAME}"))
    header = resolve_header(config.sdk.include_dir)
    print(_printable(f"  Header: {header.path}"))

    if config.check_library_dir:
        validate_library_dir(config.sdk.library_dir)
        print(_printable(f"  Library: {config.sdk.library_dir} (checked)"))

    generator_config = assemble_generator_config(config.output_path)

    link_record = LinkDirectoryRecord(
        library_dir=config.sdk.library_dir,
        sidecar_path=config.sidecar_path,
    )
    sidecar = persist_link_directory(link_record.library_dir, link_record.sidecar_path)
    print(_printable(f"  Link dir: {link_record.library_dir} -> {sidecar.path}"))

    bindings = invoke_generator(header, generator_config, config.bindgen)
    print(_printable(f"  Written: {bindings.line_count} lines to {bindings.path}"))

    return PipelineResult(
        header=header,
        link_record=link_record,
        sidecar=sidecar,
        bindings=bindings,
    )


def run_show_config(config: PipelineConfig) -> None:
    """Print the resolved configuration and bindgen command; write nothing.

    Raises:
        ConfigError: Header missing, or --check-library-dir failed.
    """
    header = resolve_header(config.sdk.include_dir)
    if config.check_library_dir:
        validate_library_dir(config.sdk.library_dir)
    generator_config = assemble_generator_config(config.output_path)
    argv = build_generator_argv(config.bindgen, header, generator_config)

    lines = [
        f"Header:      {header.path}",
        f"Library dir: {config.sdk.library_dir}",
        f"Sidecar:     {config.sidecar_path}",
        f"Output:      {config.output_path}",
        "",
        "Command:",
        f"  {shlex.join(argv)}",
        "",
        "Link directives:",
    ]
    lines.extend(f"  {d}" for d in format_link_directives(config.sdk.library_dir))
    print(_printable("\n".join(lines)))


# ===--- S6 Summary report ---=== #


def format_pipeline_summary(result: PipelineResult) -> str:
    """Render a PipelineResult as the console summary block.

    Returns a string with exactly one trailing newline.
    """
    lines: list[str] = []
    lines.append(f"{LIBRARY_NAME} bindings generated:")
    lines.append("")
    lines.append(f"  Header:     {result.header.path}")
    lines.append(f"  Link dir:   {result.link_record.library_dir}")
    lines.append("")
    lines.append("  Files written:")
    for file_result in (result.sidecar, result.bindings):
        line_str = f"{file_result.line_count:>6,} lines"
        lines.append(f"    {file_result.filename:<20} {line_str}")
    lines.append("")
    lines.append("  Verify: cargo build")
    lines.append("")

    return "\n".join(lines)


def print_pipeline_summary(result: PipelineResult) -> None:
    print(_printable(format_pipeline_summary(result)), end="")


# ===--- Main ---=== #


def _report_config_error(err: ConfigError) -> None:
    print(_printable(f"Config error [{err.code}]: {err.message}"), file=sys.stderr)
    if err.suggestion:
        print(_printable(f"Hint: {err.suggestion}"), file=sys.stderr)


def main(argv: list[str] | None = None) -> None:
    try:
        config = build_config(argv)
        if config.show_config:
            run_show_config(config)
            return
        result = run_pipeline(config)
    except ConfigError as err:
        _report_config_error(err)
        raise SystemExit(EXIT_CONFIG_ERROR) from err
    except GeneratorError as err:
        print(_printable(f"Generator error: {err.message}"), file=sys.stderr)
        raise SystemExit(err.exit_code) from err
    except OSError as err:
        print(_printable(f"Error: {err}"), file=sys.stderr)
        raise SystemExit(1) from err

    print_pipeline_summary(result)


if __name__ == "__main__":
    main()
