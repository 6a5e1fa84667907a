"""Build-output category definitions for ratifact."""

from ratifact.models import BuildCategory

# Ordered: the first category whose directory name and markers match wins.
CATEGORIES: dict[str, BuildCategory] = {
    # =============================================================================
    # RUST / JVM
    # =============================================================================
    "cargo_target": BuildCategory(
        id="cargo_target",
        name="Cargo Target",
        dir_names=["target"],
        language="Rust",
        build_system="cargo",
        markers=["Cargo.toml"],
        rebuild_command=["cargo", "build"],
        description="Compiled crates, incremental caches and binaries",
    ),
    "maven_target": BuildCategory(
        id="maven_target",
        name="Maven Target",
        dir_names=["target"],
        language="Java",
        build_system="maven",
        markers=["pom.xml"],
        rebuild_command=["mvn", "package"],
        description="Compiled classes and packaged jars",
    ),
    "gradle_build": BuildCategory(
        id="gradle_build",
        name="Gradle Build",
        dir_names=["build", ".gradle"],
        language="Java",
        build_system="gradle",
        markers=["build.gradle", "build.gradle.kts", "settings.gradle", "settings.gradle.kts"],
        rebuild_command=["gradle", "build"],
        description="Gradle outputs and per-project caches",
    ),
    # =============================================================================
    # C / C++
    # =============================================================================
    "cmake_build": BuildCategory(
        id="cmake_build",
        name="CMake Build Tree",
        dir_names=["build", "cmake-build-debug", "cmake-build-release", "Debug", "Release"],
        language="C/C++",
        build_system="cmake",
        markers=["CMakeLists.txt"],
        rebuild_command=["cmake", "--build", "build"],
        description="CMake build trees with objects and binaries",
    ),
    "swift_build": BuildCategory(
        id="swift_build",
        name="SwiftPM Build",
        dir_names=[".build"],
        language="Swift",
        build_system="swiftpm",
        markers=["Package.swift"],
        rebuild_command=["swift", "build"],
        description="Swift package manager build products",
    ),
    # =============================================================================
    # JAVASCRIPT / TYPESCRIPT
    # =============================================================================
    "node_modules": BuildCategory(
        id="node_modules",
        name="Node Modules",
        dir_names=["node_modules"],
        language="JavaScript",
        build_system="npm",
        rebuild_command=["npm", "install"],
        description="Installed npm/yarn/pnpm dependencies",
    ),
    "js_build": BuildCategory(
        id="js_build",
        name="JavaScript Build Output",
        dir_names=["dist", "build", ".next", ".parcel-cache", ".nyc_output", ".output", ".cache"],
        language="JavaScript",
        build_system="npm",
        markers=["package.json"],
        rebuild_command=["npm", "run", "build"],
        description="Bundler output and framework caches",
    ),
    # =============================================================================
    # PYTHON
    # =============================================================================
    "pycache": BuildCategory(
        id="pycache",
        name="Python Bytecode",
        dir_names=["__pycache__"],
        language="Python",
        build_system="python",
        description="Compiled .pyc bytecode",
    ),
    "python_build": BuildCategory(
        id="python_build",
        name="Python Build Output",
        dir_names=["build", "dist", ".eggs", "eggs", ".tox", ".pytest_cache"],
        language="Python",
        build_system="python",
        markers=["pyproject.toml", "setup.py", "setup.cfg"],
        rebuild_command=["python", "-m", "build"],
        description="sdists, wheels, eggs and test environment caches",
    ),
    # =============================================================================
    # OTHER ECOSYSTEMS
    # =============================================================================
    "composer_vendor": BuildCategory(
        id="composer_vendor",
        name="Composer Vendor",
        dir_names=["vendor"],
        language="PHP",
        build_system="composer",
        markers=["composer.json"],
        rebuild_command=["composer", "install"],
        description="Installed Composer dependencies",
    ),
    "bundler": BuildCategory(
        id="bundler",
        name="Bundler Cache",
        dir_names=[".bundle"],
        language="Ruby",
        build_system="bundler",
        markers=["Gemfile"],
        rebuild_command=["bundle", "install"],
        description="Bundler configuration and installed gems",
    ),
    "dotnet_build": BuildCategory(
        id="dotnet_build",
        name=".NET Build Output",
        dir_names=["bin", "obj"],
        language="C#",
        build_system="dotnet",
        markers=["*.csproj", "*.fsproj", "*.sln"],
        rebuild_command=["dotnet", "build"],
        description="MSBuild intermediate and output directories",
    ),
    "generic_out": BuildCategory(
        id="generic_out",
        name="Generic Output",
        dir_names=["out"],
        language="Unknown",
        build_system="make",
        markers=["Makefile", "justfile", "meson.build"],
        rebuild_command=["make"],
        description="Conventional output directory of make-style builds",
    ),
}


def get_category(category_id: str) -> BuildCategory | None:
    """Get a category by ID."""
    return CATEGORIES.get(category_id)


def get_all_categories() -> list[BuildCategory]:
    """Get all categories."""
    return list(CATEGORIES.values())


def get_categories_for_dir_name(name: str) -> list[BuildCategory]:
    """Get every category that may produce a directory with this name."""
    return [c for c in CATEGORIES.values() if name in c.dir_names]


def get_build_output_names() -> frozenset[str]:
    """All directory names any category produces."""
    return frozenset(name for c in CATEGORIES.values() for name in c.dir_names)
