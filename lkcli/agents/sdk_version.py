"""
SDK version check for agent projects.

The agent service advertises a minimum SDK version per ecosystem. Every
project file that can name the SDK is inspected; the most authoritative
hit wins (lock files over manifests over loose requirement files).

Lock files pin an exact version. Manifests carry a constraint, which is
satisfied when any version it admits is at least the minimum.
"""

import json
import re
import tomllib
from dataclasses import dataclass
from enum import Enum
from functools import total_ordering
from pathlib import Path

import structlog
import yaml

from lkcli.core.errors import InputError, ProtocolError

from .detect import ProjectType

logger = structlog.get_logger()

PYTHON_PACKAGE = "livekit-agents"
NODE_PACKAGE = "@livekit/agents"

PYTHON_MIN_KEY = "python-min-sdk-version"
NODE_MIN_KEY = "node-min-sdk-version"

PYTHON_FILES = (
    "requirements.txt",
    "requirements.lock",
    "pyproject.toml",
    "Pipfile",
    "Pipfile.lock",
    "setup.py",
    "setup.cfg",
    "poetry.lock",
    "uv.lock",
)
NODE_FILES = ("package.json", "package-lock.json", "yarn.lock", "pnpm-lock.yaml", "bun.lockb")

FILE_PRIORITY = {
    "package-lock.json": 10,
    "yarn.lock": 10,
    "pnpm-lock.yaml": 10,
    "poetry.lock": 10,
    "uv.lock": 10,
    "Pipfile.lock": 10,
    "bun.lockb": 10,
    "requirements.lock": 8,
    "package.json": 5,
    "pyproject.toml": 5,
    "requirements.txt": 3,
    "Pipfile": 3,
    "setup.py": 2,
    "setup.cfg": 2,
}

ALWAYS_SATISFIED = {"latest", "*", "", "next"}

_LEADING_OPERATORS = re.compile(r"^[=~><!^]+")
_DOT_PRERELEASE = re.compile(r"^(\d+(?:\.\d+)*)\.([a-zA-Z][0-9A-Za-z.\-]*)$")
_JUXTAPOSED_PRERELEASE = re.compile(r"^(\d+(?:\.\d+)*)([a-zA-Z][0-9A-Za-z.\-]*)$")
_PY_GIT = re.compile(r"(?i)^livekit-agents(?:\[[^\]]+\])?\s*@\s*git\+")
_PY_REQ = re.compile(r"(?i)^livekit-agents(?:\[[^\]]+\])?\s*([=~><!]+)?\s*([^#;]+)?")
_DIGIT = re.compile(r"\d")


class FileKind(str, Enum):
    LOCK = "lock"  # exact version
    MANIFEST = "manifest"  # version constraint


class CheckStatus(str, Enum):
    SATISFIED = "satisfied"
    TOO_OLD = "too_old"
    NOT_FOUND = "not_found"
    UNRESOLVED = "unresolved"  # file could not be parsed


# =============================================================
# Versions
# =============================================================


def normalize_version(version: str) -> str:
    """
    Bring a version string into MAJOR.MINOR.PATCH[-PRERELEASE] form.

    Idempotent: normalize_version(normalize_version(s)) == normalize_version(s).
    """
    v = version.strip().strip("\"'").strip()
    v = _LEADING_OPERATORS.sub("", v).strip()
    if v[:1] in ("v", "V") and v[1:2].isdigit():
        v = v[1:]

    if "-" not in v:
        m = _DOT_PRERELEASE.match(v) or _JUXTAPOSED_PRERELEASE.match(v)
        if m:
            v = f"{m.group(1)}-{m.group(2)}"

    base, sep, pre = v.partition("-")
    base, plus, build = base.partition("+")
    parts = base.split(".") if base else []
    if parts and all(p.isdigit() for p in parts):
        while len(parts) < 3:
            parts.append("0")
        base = ".".join(parts)
    return base + (sep + pre if sep else "") + (plus + build if plus else "")


@total_ordering
@dataclass(frozen=True)
class SemVer:
    major: int
    minor: int
    patch: int
    prerelease: tuple[str, ...] = ()

    @classmethod
    def parse(cls, version: str) -> "SemVer":
        v = normalize_version(version)
        core, _, pre = v.split("+", 1)[0].partition("-")
        parts = core.split(".")
        if len(parts) != 3 or not all(p.isdigit() for p in parts):
            raise ValueError(f"invalid version format: {version}")
        return cls(int(parts[0]), int(parts[1]), int(parts[2]), tuple(pre.split(".")) if pre else ())

    @property
    def base(self) -> "SemVer":
        return SemVer(self.major, self.minor, self.patch)

    def _key(self):
        # Releases sort after their prereleases
        return (self.major, self.minor, self.patch, not self.prerelease)

    def __lt__(self, other: "SemVer") -> bool:
        if self._key() != other._key():
            return self._key() < other._key()
        for a, b in zip(self.prerelease, other.prerelease):
            if a == b:
                continue
            a_num, b_num = a.isdigit(), b.isdigit()
            if a_num and b_num:
                return int(a) < int(b)
            if a_num != b_num:
                return a_num
            return a < b
        return len(self.prerelease) < len(other.prerelease)

    def __str__(self) -> str:
        s = f"{self.major}.{self.minor}.{self.patch}"
        return s + ("-" + ".".join(self.prerelease) if self.prerelease else "")


def _meets_minimum(v: SemVer, minimum: SemVer) -> bool:
    if not v < minimum:
        return True
    # A prerelease of the minimum itself is accepted
    return v.base == minimum.base


def is_version_satisfied(version: str, min_version: str, kind: FileKind = FileKind.LOCK) -> bool:
    """Whether an observed version (LOCK) or constraint (MANIFEST) meets the minimum."""
    version = version.strip()
    if version.strip("\"'") in ALWAYS_SATISFIED:
        return True
    minimum = SemVer.parse(min_version)
    if kind is FileKind.LOCK:
        return _meets_minimum(SemVer.parse(version), minimum)
    return any(_range_admits_minimum(alt, minimum) for alt in version.split("||"))


def _bump_upper(op: str, v: SemVer, raw: str) -> SemVer:
    """Exclusive upper bound of a caret/tilde/compatible-release constraint."""
    given = len(raw.split("-")[0].split("."))
    if op == "^":
        if v.major > 0:
            return SemVer(v.major + 1, 0, 0)
        if v.minor > 0:
            return SemVer(0, v.minor + 1, 0)
        return SemVer(0, 0, v.patch + 1)
    if op == "~=":
        if given <= 2:
            return SemVer(v.major + 1, 0, 0)
        return SemVer(v.major, v.minor + 1, 0)
    # npm tilde
    if given == 1:
        return SemVer(v.major + 1, 0, 0)
    return SemVer(v.major, v.minor + 1, 0)


def _range_admits_minimum(constraint: str, minimum: SemVer) -> bool:
    """True when some version allowed by the constraint is >= minimum."""
    lower: SemVer | None = None
    upper: SemVer | None = None
    upper_inclusive = False
    exact: SemVer | None = None

    tokens = [t for part in constraint.split(",") for t in part.split()]
    # Join operators separated from their version by whitespace
    merged: list[str] = []
    for t in tokens:
        if merged and re.fullmatch(r"[=~><!^]+", merged[-1]):
            merged[-1] += t
        else:
            merged.append(t)

    for token in merged:
        m = re.match(r"^(===|==|~=|>=|<=|!=|\^|~|>|<|=)?\s*(.+)$", token.strip().strip("\"'"))
        if not m:
            continue
        op, raw = m.group(1) or "", m.group(2).strip()
        if raw in ALWAYS_SATISFIED or raw.lower() in ("x", "*"):
            continue
        raw = re.sub(r"\.[xX*]$", "", raw)
        if op == "!=":
            continue
        v = SemVer.parse(raw)
        if op in ("", "=", "==", "==="):
            if "x" in m.group(2).lower() or "*" in m.group(2):
                lower = max(lower, v) if lower else v
                upper = _bump_upper("~", v, raw)
            else:
                exact = v
        elif op in (">=", ">"):
            lower = max(lower, v) if lower else v
        elif op in ("<", "<="):
            if upper is None or v < upper:
                upper, upper_inclusive = v, op == "<="
        else:
            lower = max(lower, v) if lower else v
            bound = _bump_upper(op, v, raw)
            if upper is None or bound < upper:
                upper, upper_inclusive = bound, False

    if exact is not None:
        return _meets_minimum(exact, minimum)
    floor = max(lower, minimum) if lower else minimum
    if upper is None:
        return True
    if upper_inclusive:
        return not upper < floor
    return floor < upper


# =============================================================
# File parsers
# =============================================================


@dataclass
class Finding:
    package: str
    version: str
    file: str
    kind: FileKind


def parse_requirement_line(line: str) -> str | None:
    """Version spec for livekit-agents on a requirements-style line, or None."""
    line = line.strip()
    if _PY_GIT.match(line):
        return "latest"
    m = _PY_REQ.match(line)
    if not m:
        return None
    # Reject other packages sharing the prefix, e.g. livekit-agents-foo
    rest = line[len("livekit-agents"):]
    if rest and not re.match(r"^(\[|\s|[=~><!;]|$)", rest):
        return None

    operator = m.group(1) or ""
    version = (m.group(2) or "").strip()
    if not version:
        return "latest"

    if "," in version:
        for part in version.split(","):
            part = part.strip()
            if _DIGIT.search(part):
                if re.search(r"[=~><]", part):
                    return part
                return operator + part
        return "latest"
    first = version.split()[0]
    if re.search(r"[=~><]", first):
        return first
    return operator + first


def _requirements(path: Path) -> Finding | None:
    kind = FileKind.LOCK if path.name.endswith(".lock") else FileKind.MANIFEST
    for line in path.read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        version = parse_requirement_line(line)
        if version is not None:
            if kind is FileKind.LOCK:
                version = version.lstrip("=")
            return Finding(PYTHON_PACKAGE, version, path.name, kind)
    return None


def _pyproject(path: Path) -> Finding | None:
    doc = tomllib.loads(path.read_text(encoding="utf-8"))
    for dep in doc.get("project", {}).get("dependencies", []):
        version = parse_requirement_line(dep)
        if version is not None:
            return Finding(PYTHON_PACKAGE, version, path.name, FileKind.MANIFEST)
    poetry = doc.get("tool", {}).get("poetry", {}).get("dependencies", {})
    if PYTHON_PACKAGE in poetry:
        spec = poetry[PYTHON_PACKAGE]
        version = spec.get("version", "*") if isinstance(spec, dict) else str(spec)
        return Finding(PYTHON_PACKAGE, version, path.name, FileKind.MANIFEST)
    return None


def _pipfile(path: Path) -> Finding | None:
    doc = tomllib.loads(path.read_text(encoding="utf-8"))
    for section in ("packages", "dev-packages"):
        spec = doc.get(section, {}).get(PYTHON_PACKAGE)
        if spec is not None:
            version = spec.get("version", "*") if isinstance(spec, dict) else str(spec)
            return Finding(PYTHON_PACKAGE, "latest" if version == "*" else version, path.name, FileKind.MANIFEST)
    return None


def _setup_py(path: Path) -> Finding | None:
    content = path.read_text(encoding="utf-8")
    for pattern in (r"install_requires\s*=\s*\[([\s\S]*?)\]", r"dependencies\s*=\s*\[([\s\S]*?)\]"):
        m = re.search(pattern, content, re.IGNORECASE)
        if not m:
            continue
        dep = re.search(r"""["'](livekit-agents(?:\[[^\]]+\])?[^"']*)["']""", m.group(1), re.IGNORECASE)
        if dep:
            version = parse_requirement_line(dep.group(1))
            if version is not None:
                return Finding(PYTHON_PACKAGE, version, path.name, FileKind.MANIFEST)
    return None


def _setup_cfg(path: Path) -> Finding | None:
    for line in path.read_text(encoding="utf-8").splitlines():
        version = parse_requirement_line(line.strip())
        if version is not None:
            return Finding(PYTHON_PACKAGE, version, path.name, FileKind.MANIFEST)
    return None


def _poetry_or_uv_lock(path: Path) -> Finding | None:
    doc = tomllib.loads(path.read_text(encoding="utf-8"))
    for pkg in doc.get("package", []):
        if pkg.get("name") == PYTHON_PACKAGE:
            return Finding(PYTHON_PACKAGE, pkg.get("version", ""), path.name, FileKind.LOCK)
    return None


def _pipfile_lock(path: Path) -> Finding | None:
    doc = json.loads(path.read_text(encoding="utf-8"))
    entry = doc.get("default", {}).get(PYTHON_PACKAGE)
    if entry and entry.get("version"):
        return Finding(PYTHON_PACKAGE, entry["version"].lstrip("="), path.name, FileKind.LOCK)
    return None


def _package_json(path: Path) -> Finding | None:
    doc = json.loads(path.read_text(encoding="utf-8"))
    for section in ("dependencies", "devDependencies", "peerDependencies", "optionalDependencies"):
        version = (doc.get(section) or {}).get(NODE_PACKAGE)
        if version is not None:
            return Finding(NODE_PACKAGE, version, path.name, FileKind.MANIFEST)
    return None


def _package_lock(path: Path) -> Finding | None:
    doc = json.loads(path.read_text(encoding="utf-8"))
    entry = (doc.get("packages") or {}).get(f"node_modules/{NODE_PACKAGE}") or (doc.get("dependencies") or {}).get(
        NODE_PACKAGE
    )
    if entry and entry.get("version"):
        return Finding(NODE_PACKAGE, entry["version"], path.name, FileKind.LOCK)
    return None


def _yarn_lock(path: Path) -> Finding | None:
    content = path.read_text(encoding="utf-8")
    m = re.search(r'(?m)^"?@livekit/agents@[^\n]*:\s*\n\s*version:?\s+"?([^"\n]+)"?', content)
    if m:
        return Finding(NODE_PACKAGE, m.group(1).strip(), path.name, FileKind.LOCK)
    return None


def _pnpm_lock(path: Path) -> Finding | None:
    doc = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    for importer in (doc.get("importers") or {}).values():
        for section in ("dependencies", "devDependencies"):
            entry = (importer.get(section) or {}).get(NODE_PACKAGE)
            if entry:
                version = entry.get("version", "") if isinstance(entry, dict) else str(entry)
                return Finding(NODE_PACKAGE, version.split("(")[0], path.name, FileKind.LOCK)
    for key in doc.get("packages") or {}:
        m = re.match(r"^/?@livekit/agents[@/]([^(@/]+)", str(key))
        if m:
            return Finding(NODE_PACKAGE, m.group(1), path.name, FileKind.LOCK)
    return None


def _bun_lockb(path: Path) -> Finding | None:
    raise ValueError("binary bun.lockb cannot be inspected")


PARSERS = {
    "requirements.txt": _requirements,
    "requirements.lock": _requirements,
    "pyproject.toml": _pyproject,
    "Pipfile": _pipfile,
    "Pipfile.lock": _pipfile_lock,
    "setup.py": _setup_py,
    "setup.cfg": _setup_cfg,
    "poetry.lock": _poetry_or_uv_lock,
    "uv.lock": _poetry_or_uv_lock,
    "package.json": _package_json,
    "package-lock.json": _package_lock,
    "yarn.lock": _yarn_lock,
    "pnpm-lock.yaml": _pnpm_lock,
    "bun.lockb": _bun_lockb,
}


# =============================================================
# Check
# =============================================================


@dataclass
class VersionCheckResult:
    status: CheckStatus
    package: str
    min_version: str
    version: str = ""
    file: str = ""
    error: str = ""

    @property
    def satisfied(self) -> bool:
        return self.status is CheckStatus.SATISFIED


def target_package(project_type: ProjectType) -> str:
    if project_type.is_python:
        return PYTHON_PACKAGE
    if project_type.is_node:
        return NODE_PACKAGE
    return ""


def detect_project_files(directory: Path, project_type: ProjectType) -> list[Path]:
    names = PYTHON_FILES if project_type.is_python else NODE_FILES if project_type.is_node else ()
    return [directory / n for n in names if (directory / n).is_file()]


def check_sdk_version(
    directory: Path | str,
    project_type: ProjectType,
    settings: dict[str, str],
) -> VersionCheckResult:
    """Inspect project files and report how the SDK compares to the server minimum."""
    python_min = settings.get(PYTHON_MIN_KEY, "")
    node_min = settings.get(NODE_MIN_KEY, "")
    if not python_min or not node_min:
        raise ProtocolError("unable to fetch client settings from server, please try again later")

    directory = Path(directory)
    package = target_package(project_type)
    min_version = python_min if project_type.is_python else node_min

    files = detect_project_files(directory, project_type)
    if not files:
        raise InputError("unable to locate project files, please use a supported Python or Node.js project structure")

    best: tuple[int, VersionCheckResult] | None = None
    parse_errors: list[str] = []
    for path in files:
        try:
            finding = PARSERS[path.name](path)
            if finding is None:
                continue
            ok = is_version_satisfied(finding.version, min_version, finding.kind)
        except (OSError, ValueError, tomllib.TOMLDecodeError, yaml.YAMLError) as e:
            logger.debug("sdk_version_file_skipped", file=path.name, error=str(e))
            parse_errors.append(f"{path.name}: {e}")
            continue

        result = VersionCheckResult(
            status=CheckStatus.SATISFIED if ok else CheckStatus.TOO_OLD,
            package=package,
            min_version=min_version,
            version=finding.version,
            file=path.name,
        )
        priority = FILE_PRIORITY.get(path.name, 0)
        if best is None or priority > best[0]:
            best = (priority, result)

    if best is not None:
        logger.debug("sdk_version_checked", file=best[1].file, version=best[1].version, status=best[1].status.value)
        return best[1]
    if parse_errors:
        return VersionCheckResult(CheckStatus.UNRESOLVED, package, min_version, error="; ".join(parse_errors))
    return VersionCheckResult(CheckStatus.NOT_FOUND, package, min_version)


def require_sdk_version(directory: Path | str, project_type: ProjectType, settings: dict[str, str]) -> VersionCheckResult:
    """Like check_sdk_version but raise for anything other than Satisfied."""
    result = check_sdk_version(directory, project_type, settings)
    if result.status in (CheckStatus.NOT_FOUND, CheckStatus.UNRESOLVED):
        msg = f"package {result.package} not found in any project files. Are you sure this is an agent?"
        if result.error:
            msg += f" ({result.error})"
        raise InputError(msg)
    if result.status is CheckStatus.TOO_OLD:
        raise InputError(
            f"package {result.package} version {result.version} is too old, please upgrade to {result.min_version}"
        )
    return result
