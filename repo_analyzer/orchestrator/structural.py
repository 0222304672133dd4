"""Structural metrics computed directly from the checkout, without the LLM.

Three cheap passes over the repository tree:
- analyze_structure: file/dir counts, languages by extension, key files
- analyze_dependencies: declared dependencies from common manifests
- analyze_code_quality: line counts, branch-keyword complexity,
  duplicate-line ratio, a rough maintainability index, risky patterns

These are synchronous; the pipeline runs them with asyncio.to_thread.
"""

import hashlib
import json
import logging
import os
import re
import tomllib
from collections import Counter
from pathlib import Path
from typing import Iterator

from repo_analyzer.orchestrator.schemas import (
    CodeQualityMetrics,
    DependencyInfo,
    FileComplexity,
    RepositoryStructure,
    SecurityFinding,
)

logger = logging.getLogger(__name__)

IGNORED_DIRS = {"node_modules", "dist", "build", "__pycache__", "venv", ".venv", "target", "vendor", "coverage"}

LANGUAGE_BY_EXTENSION = {
    ".py": "Python",
    ".js": "JavaScript",
    ".jsx": "JavaScript",
    ".mjs": "JavaScript",
    ".ts": "TypeScript",
    ".tsx": "TypeScript",
    ".go": "Go",
    ".rs": "Rust",
    ".java": "Java",
    ".kt": "Kotlin",
    ".rb": "Ruby",
    ".php": "PHP",
    ".cs": "C#",
    ".c": "C",
    ".h": "C",
    ".cpp": "C++",
    ".hpp": "C++",
    ".swift": "Swift",
    ".scala": "Scala",
    ".vue": "Vue",
    ".sh": "Shell",
    ".md": "Markdown",
    ".json": "JSON",
    ".yaml": "YAML",
    ".yml": "YAML",
    ".html": "HTML",
    ".css": "CSS",
    ".scss": "CSS",
    ".sql": "SQL",
}

SOURCE_EXTENSIONS = {
    ext for ext, lang in LANGUAGE_BY_EXTENSION.items()
    if lang not in {"Markdown", "JSON", "YAML", "HTML", "CSS"}
}

KEY_FILE_NAMES = {
    "readme.md", "readme", "readme.rst", "license", "package.json", "tsconfig.json",
    "pyproject.toml", "setup.py", "setup.cfg", "requirements.txt", "go.mod", "cargo.toml",
    "pom.xml", "build.gradle", "dockerfile", "docker-compose.yml", "makefile",
    "main.py", "app.py", "index.js", "index.ts", "main.go", "main.rs",
}

MAX_FILE_BYTES = 1_000_000
MAX_QUALITY_FILES = 2000
COMPLEX_FILE_LIMIT = 10

_BRANCH_PATTERN = re.compile(r"\b(if|elif|for|while|case|catch|except)\b|&&|\|\|")

_SECURITY_PATTERNS = [
    (re.compile(r"\beval\s*\("), "use of eval()"),
    (re.compile(r"\bexec\s*\("), "use of exec()"),
    (re.compile(r"shell\s*=\s*True"), "subprocess with shell=True"),
    (re.compile(r"\.innerHTML\s*="), "assignment to innerHTML"),
    (
        re.compile(r"(password|secret|api[_-]?key|token)\s*[:=]\s*['\"][^'\"\s]{8,}['\"]", re.IGNORECASE),
        "possible hardcoded credential",
    ),
]


def iter_files(root: Path) -> Iterator[Path]:
    """Yield files under root, skipping hidden and build directories."""
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = sorted(d for d in dirnames if not d.startswith(".") and d not in IGNORED_DIRS)
        for name in sorted(filenames):
            if not name.startswith("."):
                yield Path(dirpath) / name


def analyze_structure(root: Path) -> RepositoryStructure:
    languages: Counter = Counter()
    key_files: list[str] = []
    directories: set[Path] = set()
    total_files = 0
    total_size = 0

    for path in iter_files(root):
        rel = path.relative_to(root)
        total_files += 1
        try:
            total_size += path.stat().st_size
        except OSError:
            pass
        directories.update(p for p in rel.parents if p != Path("."))
        language = LANGUAGE_BY_EXTENSION.get(path.suffix.lower())
        if language:
            languages[language] += 1
        if path.name.lower() in KEY_FILE_NAMES:
            key_files.append(rel.as_posix())

    top_level = sorted(
        p.name + ("/" if p.is_dir() else "")
        for p in root.iterdir()
        if not p.name.startswith(".") and p.name not in IGNORED_DIRS
    ) if root.is_dir() else []

    return RepositoryStructure(
        total_files=total_files,
        total_directories=len(directories),
        total_size_bytes=total_size,
        languages=dict(languages.most_common()),
        key_files=sorted(key_files, key=lambda p: (p.count("/"), p)),
        top_level=top_level,
    )


def _parse_requirement(line: str) -> tuple[str, str]:
    match = re.match(r"^([A-Za-z0-9_.\-\[\]]+)\s*(.*)$", line)
    if not match:
        return line, ""
    return match.group(1), match.group(2).strip()


def analyze_dependencies(root: Path) -> DependencyInfo:
    info = DependencyInfo()

    package_json = root / "package.json"
    if package_json.is_file():
        try:
            data = json.loads(package_json.read_text(encoding="utf-8"))
            info.manifests.append("package.json")
            info.ecosystems.append("npm")
            info.dependencies.update(data.get("dependencies") or {})
            info.dependencies.update(data.get("peerDependencies") or {})
            info.dev_dependencies.update(data.get("devDependencies") or {})
        except (OSError, ValueError) as e:
            logger.warning(f"Could not parse package.json: {e}")

    for req_file in sorted(root.glob("requirements*.txt")):
        try:
            lines = req_file.read_text(encoding="utf-8").splitlines()
        except OSError as e:
            logger.warning(f"Could not read {req_file.name}: {e}")
            continue
        info.manifests.append(req_file.name)
        target = info.dev_dependencies if "dev" in req_file.name or "test" in req_file.name else info.dependencies
        for line in lines:
            line = line.split("#", 1)[0].strip()
            if not line or line.startswith("-"):
                continue
            name, spec = _parse_requirement(line)
            target[name] = spec

    pyproject = root / "pyproject.toml"
    if pyproject.is_file():
        try:
            data = tomllib.loads(pyproject.read_text(encoding="utf-8"))
            info.manifests.append("pyproject.toml")
            project = data.get("project", {})
            for line in project.get("dependencies", []):
                name, spec = _parse_requirement(line)
                info.dependencies[name] = spec
            for extra in project.get("optional-dependencies", {}).values():
                for line in extra:
                    name, spec = _parse_requirement(line)
                    info.dev_dependencies[name] = spec
        except (OSError, tomllib.TOMLDecodeError) as e:
            logger.warning(f"Could not parse pyproject.toml: {e}")
    if any(m.startswith("requirements") or m == "pyproject.toml" for m in info.manifests):
        info.ecosystems.append("pypi")

    go_mod = root / "go.mod"
    if go_mod.is_file():
        info.manifests.append("go.mod")
        info.ecosystems.append("go")
        for match in re.finditer(r"^\s*([\w.\-/]+\.[\w.\-/]+)\s+(v[\w.\-+]+)", go_mod.read_text(encoding="utf-8"), re.MULTILINE):
            info.dependencies[match.group(1)] = match.group(2)

    cargo = root / "Cargo.toml"
    if cargo.is_file():
        try:
            data = tomllib.loads(cargo.read_text(encoding="utf-8"))
            info.manifests.append("Cargo.toml")
            info.ecosystems.append("cargo")
            for section, target in (("dependencies", info.dependencies), ("dev-dependencies", info.dev_dependencies)):
                for name, spec in (data.get(section) or {}).items():
                    target[name] = spec if isinstance(spec, str) else str(spec.get("version", ""))
        except (OSError, tomllib.TOMLDecodeError) as e:
            logger.warning(f"Could not parse Cargo.toml: {e}")

    return info


def analyze_code_quality(root: Path) -> CodeQualityMetrics:
    files: list[FileComplexity] = []
    security: list[SecurityFinding] = []
    line_hashes: Counter = Counter()
    hashed_lines = 0

    for path in iter_files(root):
        if path.suffix.lower() not in SOURCE_EXTENSIONS:
            continue
        if len(files) >= MAX_QUALITY_FILES:
            logger.info(f"Quality scan capped at {MAX_QUALITY_FILES} files")
            break
        try:
            if path.stat().st_size > MAX_FILE_BYTES:
                continue
            text = path.read_text(encoding="utf-8", errors="ignore")
        except OSError:
            continue

        rel = path.relative_to(root).as_posix()
        lines = text.splitlines()
        complexity = 1
        for number, line in enumerate(lines, start=1):
            complexity += len(_BRANCH_PATTERN.findall(line))
            stripped = line.strip()
            if len(stripped) > 20:
                line_hashes[hashlib.md5(stripped.encode("utf-8")).hexdigest()] += 1
                hashed_lines += 1
            for pattern, issue in _SECURITY_PATTERNS:
                if pattern.search(line):
                    security.append(SecurityFinding(path=rel, line=number, issue=issue))
        files.append(FileComplexity(path=rel, lines=len(lines), complexity=complexity))

    if not files:
        return CodeQualityMetrics()

    total_lines = sum(f.lines for f in files)
    duplicated = sum(count - 1 for count in line_hashes.values() if count > 1)
    duplicate_ratio = duplicated / hashed_lines if hashed_lines else 0.0
    average_complexity = sum(f.complexity for f in files) / len(files)
    maintainability = 100.0 - min(average_complexity, 40.0) * 1.5 - duplicate_ratio * 40.0

    return CodeQualityMetrics(
        files_analyzed=len(files),
        total_lines=total_lines,
        average_file_lines=round(total_lines / len(files), 1),
        average_complexity=round(average_complexity, 2),
        max_complexity=max(f.complexity for f in files),
        complex_files=sorted(files, key=lambda f: f.complexity, reverse=True)[:COMPLEX_FILE_LIMIT],
        duplicate_line_ratio=round(duplicate_ratio, 4),
        maintainability_index=round(max(0.0, min(100.0, maintainability)), 1),
        security_issues=security[:100],
    )
