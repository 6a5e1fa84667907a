"""Classification of directory entries into projects and build outputs.

Everything here is a pure function of the path it is given and the marker
files sitting next to it; nothing touches the store.
"""

import fnmatch
import os
from dataclasses import dataclass
from pathlib import Path

from ratifact.categories import get_build_output_names, get_categories_for_dir_name, get_category

# Marker file -> (language, build system). First match wins.
PROJECT_MARKERS: list[tuple[str, str, str]] = [
    ("Cargo.toml", "Rust", "cargo"),
    ("pom.xml", "Java", "maven"),
    ("build.gradle.kts", "Kotlin", "gradle"),
    ("build.gradle", "Java", "gradle"),
    ("settings.gradle", "Java", "gradle"),
    ("CMakeLists.txt", "C/C++", "cmake"),
    ("Package.swift", "Swift", "swiftpm"),
    ("go.mod", "Go", "go"),
    ("tsconfig.json", "TypeScript", "npm"),
    ("package.json", "JavaScript", "npm"),
    ("pyproject.toml", "Python", "python"),
    ("setup.py", "Python", "python"),
    ("setup.cfg", "Python", "python"),
    ("composer.json", "PHP", "composer"),
    ("Gemfile", "Ruby", "bundler"),
    ("*.csproj", "C#", "dotnet"),
    ("*.fsproj", "F#", "dotnet"),
    ("*.sln", "C#", "dotnet"),
    ("meson.build", "C/C++", "meson"),
    ("Makefile", "Unknown", "make"),
]


@dataclass(frozen=True)
class Classification:
    """Result of classifying one directory entry."""

    language: str
    is_build_output: bool
    category_id: str | None = None
    build_system: str = "unknown"


def _list_names(directory: Path) -> list[str]:
    try:
        return os.listdir(directory)
    except (PermissionError, OSError):
        return []


def _has_marker(names: list[str], markers: list[str]) -> bool:
    for marker in markers:
        if any(ch in marker for ch in "*?["):
            if fnmatch.filter(names, marker):
                return True
        elif marker in names:
            return True
    return False


def detect_project(project_root: str | Path) -> tuple[str, str] | None:
    """Detect (language, build_system) from marker files, or None if not a project."""
    names = _list_names(Path(project_root))
    for marker, language, build_system in PROJECT_MARKERS:
        if _has_marker(names, [marker]):
            return language, build_system
    return None


def detect_language(project_root: str | Path) -> str:
    """Primary language of a project root ("Unknown" if no marker is present)."""
    detected = detect_project(project_root)
    return detected[0] if detected else "Unknown"


def detect_build_system(project_root: str | Path) -> str:
    """Build system of a project root ("unknown" if no marker is present)."""
    detected = detect_project(project_root)
    return detected[1] if detected else "unknown"


def classify(path: str | Path, is_dir: bool) -> Classification | None:
    """
    Classify a directory entry.

    Args:
        path: Absolute path of the entry
        is_dir: Whether the entry is a directory (symlinks count as not a directory)

    Returns:
        Classification for a build output or a project root, None otherwise
    """
    if not is_dir:
        return None

    path = Path(path)
    if path.name in get_build_output_names():
        parent_names = _list_names(path.parent)
        for category in get_categories_for_dir_name(path.name):
            if not category.markers or _has_marker(parent_names, category.markers):
                language = category.language
                if language == "Unknown" or not category.markers:
                    # Marker-free outputs (node_modules, __pycache__) borrow the
                    # owning project's language when there is one.
                    detected = detect_project(path.parent)
                    if detected and detected[0] != "Unknown":
                        language = detected[0]
                return Classification(
                    language=language,
                    is_build_output=True,
                    category_id=category.id,
                    build_system=category.build_system,
                )

    detected = detect_project(path)
    if detected:
        return Classification(language=detected[0], is_build_output=False, build_system=detected[1])
    return None


def rebuild_command(project_root: str | Path) -> list[str] | None:
    """
    Command that rebuilds a project, chosen from its marker files.

    Args:
        project_root: Project root directory

    Returns:
        argv list to run inside project_root, or None if the build system is unknown
    """
    names = _list_names(Path(project_root))
    for marker, _language, build_system in PROJECT_MARKERS:
        if not _has_marker(names, [marker]):
            continue
        for category_id in _BUILD_SYSTEM_CATEGORY.get(build_system, ()):
            category = get_category(category_id)
            if category and category.rebuild_command:
                return list(category.rebuild_command)
    return None


# Build system -> category whose rebuild command applies to a whole project.
_BUILD_SYSTEM_CATEGORY: dict[str, tuple[str, ...]] = {
    "cargo": ("cargo_target",),
    "maven": ("maven_target",),
    "gradle": ("gradle_build",),
    "cmake": ("cmake_build",),
    "swiftpm": ("swift_build",),
    "npm": ("js_build",),
    "python": ("python_build",),
    "composer": ("composer_vendor",),
    "bundler": ("bundler",),
    "dotnet": ("dotnet_build",),
    "make": ("generic_out",),
}
