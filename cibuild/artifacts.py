"""Artifact discovery and staging into the per-target output directory."""
from __future__ import annotations

from pathlib import Path
from typing import List
import os
import re
import shlex
import shutil
import stat

from core.console import Console

from .layout import TEST_RESULTS_DIR

LIBRARY_SUFFIXES = (".a", ".so", ".dylib")
_SKIPPED_SUFFIXES = (".ninja", ".cmake", ".txt", ".json")
_ELF_MAGIC = b"\x7fELF"
_MACHO_MAGICS = {
    b"\xfe\xed\xfa\xce",
    b"\xfe\xed\xfa\xcf",
    b"\xce\xfa\xed\xfe",
    b"\xcf\xfa\xed\xfe",
    b"\xca\xfe\xba\xbe",
}
_ADD_EXECUTABLE = re.compile(r"^\s*add_executable\s*\(\s*([^\s)]+)", re.IGNORECASE)
_ADD_LIBRARY = re.compile(r"^\s*add_library\s*\(", re.IGNORECASE)


def is_executable_project(project_root: Path) -> bool:
    """Guess whether a CMake project produces an executable or only libraries.

    Executables whose name contains ``_test`` do not count; unreadable or
    ambiguous projects are treated as executable.
    """

    try:
        content = (project_root / "CMakeLists.txt").read_text(encoding="utf-8", errors="replace")
    except OSError:
        return True

    has_library = False
    for line in content.splitlines():
        match = _ADD_EXECUTABLE.match(line)
        if match:
            if "_test" not in match.group(1):
                return True
        elif _ADD_LIBRARY.match(line):
            has_library = True

    return not has_library


def _q(value: str) -> str:
    return shlex.quote(value)


def cmake_copy_commands(build_dir: str, output_dir: str, *, executable_project: bool) -> str:
    """Shell fragment staging CMake outputs from ``build_dir`` into ``output_dir``."""

    libraries = (
        f"find {_q(build_dir)} -maxdepth 2 -type f \\( -name 'lib*.a' -o -name 'lib*.so' -o -name 'lib*.dylib' \\) \\\n"
        f"    ! -path '*/CMakeFiles/*' \\\n"
        f"    -exec cp -p {{}} {_q(output_dir)}/ \\; 2>/dev/null || true"
    )
    if not executable_project:
        return "# Copy all libraries (static and shared)\n" + libraries

    return "\n".join(
        [
            "# Copy executables (main, test, bench), excluding CMake internals",
            f"find {_q(build_dir)} -maxdepth 2 -type f -executable \\",
            "    ! -name 'CMake*' ! -name '*.py' ! -name '*.sh' ! -name '*.sample' ! -name 'a.out' \\",
            "    ! -name '*.cmake' ! -path '*/CMakeFiles/*' \\",
            f"    -exec cp -p {{}} {_q(output_dir)}/ \\; 2>/dev/null || true",
            "# Copy libraries (static and shared)",
            libraries,
            "# Copy test results if they exist",
            f"if [ -f {_q(build_dir + '/Testing/TAG')} ]; then",
            f"    mkdir -p {_q(output_dir + '/' + TEST_RESULTS_DIR)}",
            f"    cp -r {_q(build_dir)}/Testing/* {_q(output_dir + '/' + TEST_RESULTS_DIR)}/ 2>/dev/null || true",
            "fi",
        ]
    )


def bazel_copy_commands(output_base: str, output_dir: str) -> str:
    """Shell fragment copying final Bazel binaries/libraries from ``*/bin/*``.

    ``output_base`` is placed in double quotes so it may be a shell variable.
    """

    return "\n".join(
        [
            "# Copy only final executables, skipping objects, dep files and runfiles",
            f'find "{output_base}" -path "*/bin/*" -type f -executable \\',
            '    ! -name "*.o" ! -name "*.d" ! -name "*.a" ! -name "*.so" ! -name "*.dylib" \\',
            '    ! -name "*.runfiles*" ! -name "*.params" ! -name "*.sh" ! -name "*.py" \\',
            '    ! -name "*.repo_mapping" ! -name "*.cppmap" ! -name "MANIFEST" \\',
            '    ! -name "*.pic.o" ! -name "*.pic.d" \\',
            f"    -exec cp -p {{}} {_q(output_dir)}/ \\; 2>/dev/null || true",
            "# Copy final libraries, skipping pic intermediates",
            f'find "{output_base}" -path "*/bin/*" -type f \\( -name "lib*.a" -o -name "lib*.so" \\) \\',
            '    ! -name "*.pic.a" \\',
            f"    -exec cp -p {{}} {_q(output_dir)}/ \\; 2>/dev/null || true",
        ]
    )


def meson_copy_commands(build_dir: str, output_dir: str) -> str:
    """Shell fragment copying Meson executables from ``src/`` and the root plus libraries."""

    src_dir = f"{build_dir}/src"
    return "\n".join(
        [
            "# Meson places executables in subdirectories (src/, bench/, ...)",
            f"if [ -d {_q(src_dir)} ]; then",
            f"    find {_q(src_dir)} -maxdepth 1 -type f -perm /111 ! -name '*.so' ! -name '*.dylib' ! -name '*.a' \\",
            f"        ! -name '*.p' ! -name '*_test' -exec cp -p {{}} {_q(output_dir)}/ \\; 2>/dev/null || true",
            "fi",
            f"find {_q(build_dir)} -maxdepth 1 -type f -perm /111 ! -name '*.so' ! -name '*.dylib' ! -name '*.a' \\",
            f"    ! -name '*.p' ! -name 'build.ninja' ! -name '*.json' -exec cp -p {{}} {_q(output_dir)}/ \\; 2>/dev/null || true",
            f"find {_q(build_dir)} -maxdepth 2 -type f \\( -name '*.a' -o -name '*.so' -o -name '*.dylib' \\) \\",
            f"    -exec cp -p {{}} {_q(output_dir)}/ \\; 2>/dev/null || true",
            f"ls -la {_q(output_dir)}/ 2>/dev/null || echo '  (no artifacts found)'",
        ]
    )


def is_library_name(name: str) -> bool:
    return name.startswith("lib") and name.endswith(LIBRARY_SUFFIXES)


def is_native_executable(path: Path) -> bool:
    """Return ``True`` for executable ELF or Mach-O files."""

    try:
        if not path.is_file() or not os.access(path, os.X_OK):
            return False
        with path.open("rb") as handle:
            magic = handle.read(4)
    except OSError:
        return False
    return magic == _ELF_MAGIC or magic in _MACHO_MAGICS


class ArtifactCollector:
    """Copies build outputs of a host build into the target output directory."""

    def __init__(self, console: Console) -> None:
        self._console = console

    def collect(self, build_dir: Path, output_dir: Path) -> List[Path]:
        copied: List[Path] = []
        if not build_dir.is_dir():
            self._console.warn(f"Build directory {build_dir} does not exist, nothing to collect")
            return copied

        for entry in sorted(build_dir.iterdir()):
            if not entry.is_file():
                continue
            name = entry.name
            if name.endswith(_SKIPPED_SUFFIXES) or name.startswith("CMake"):
                continue
            try:
                mode = entry.stat().st_mode
            except OSError:
                continue
            executable = bool(mode & (stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH))
            if not executable and not is_library_name(name):
                continue

            destination = output_dir / name
            try:
                shutil.copy2(entry, destination)
            except OSError as exc:
                self._console.warn(f"Could not copy {entry}: {exc}")
                continue
            self._console.info(f"    Copied: {name}")
            copied.append(destination)

        testing_dir = build_dir / "Testing"
        if (testing_dir / "TAG").is_file():
            results_dir = output_dir / TEST_RESULTS_DIR
            try:
                shutil.copytree(testing_dir, results_dir, dirs_exist_ok=True)
            except OSError as exc:
                self._console.warn(f"Could not copy test results from {testing_dir}: {exc}")
            else:
                copied.append(results_dir)

        if not copied:
            self._console.warn(f"No artifacts found in {build_dir}")
        return copied


def list_artifacts(output_dir: Path) -> List[Path]:
    if not output_dir.is_dir():
        return []
    return sorted(path for path in output_dir.iterdir() if path.is_file())


def find_primary_binary(
    project_name: str,
    *,
    output_dir: Path,
    build_dir: Path,
    max_depth: int = 3,
    limit: int = 5,
) -> Path | None:
    """Locate the executable to run after a host build.

    Checks ``<output>/<project>`` and ``<build>/<project>`` first, then scans
    the build tree for at most ``limit`` candidates that look like native
    executables, skipping tests, benchmarks and libraries.
    """

    for candidate in (output_dir / project_name, build_dir / project_name):
        if candidate.is_file() and os.access(candidate, os.X_OK):
            return candidate

    if not build_dir.is_dir():
        return None

    scanned = 0
    base_depth = len(build_dir.parts)
    for directory, dirnames, filenames in os.walk(build_dir):
        current = Path(directory)
        depth = len(current.parts) - base_depth
        dirnames[:] = sorted(name for name in dirnames if name != "CMakeFiles")
        # Files of the top directory count as depth 1, like find -maxdepth.
        if depth >= max_depth - 1:
            dirnames[:] = []
        for filename in sorted(filenames):
            if "_test" in filename or "_bench" in filename or filename == "a.out":
                continue
            if filename.endswith(LIBRARY_SUFFIXES):
                continue
            path = current / filename
            if not os.access(path, os.X_OK):
                continue
            scanned += 1
            if is_native_executable(path):
                return path
            if scanned >= limit:
                return None
    return None


__all__ = [
    "ArtifactCollector",
    "LIBRARY_SUFFIXES",
    "bazel_copy_commands",
    "cmake_copy_commands",
    "find_primary_binary",
    "is_executable_project",
    "is_library_name",
    "is_native_executable",
    "list_artifacts",
    "meson_copy_commands",
]
