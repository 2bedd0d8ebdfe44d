"""Description files and library headers.

A bundle carries ``<name>-pkg.el`` containing a single form::

    (define-package "foo" "1.0" "Summary"
      '((bar "2.0"))
      :url "https://example.org" :keywords '("tools"))

A single-file package describes itself through its header comments::

    ;;; foo.el --- Summary  -*- lexical-binding: t -*-
    ;; Version: 1.0
    ;; Package-Requires: ((bar "2.0"))
"""
from __future__ import annotations

import re
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from common.errors import DescriptorError, InvalidVersionError
from constants import Constants
from packages import sexp
from packages.descriptor import PackageDescriptor, PackageKind, Requirement
from versioning.vector import VersionVector

_DEFINE_PACKAGE = "define-package"
# Plist keys that map onto descriptor fields rather than extras.
_KIND_KEY = ":kind"
_ARCHIVE_KEY = ":archive"

_HEADER_FIRST_LINE = re.compile(r"^;;;\s*(?P<file>[^\s]+)\s+---\s+(?P<summary>.*?)\s*(-\*-.*-\*-)?\s*$")
_HEADER_LINE = re.compile(r"^;;+\s*(?P<key>[A-Za-z][A-Za-z-]*)\s*:\s*(?P<value>.*)$")


def description_file_name(name: str) -> str:
    return f"{name}{Constants.DESCRIPTION_SUFFIX}"


def parse_requirements(value: Any, *, context: str = "") -> Tuple[Requirement, ...]:
    """Turn ``((bar "2.0") (baz (1 2)))`` into requirements.

    Versions may be strings or integer lists; a missing version means any.
    """
    value = sexp.unquote(value)
    if value is None:
        return ()
    if not isinstance(value, list):
        raise DescriptorError(f"Malformed requirements {sexp.dumps(value)} {context}".strip())
    reqs: List[Requirement] = []
    for entry in value:
        if isinstance(entry, sexp.Symbol):
            reqs.append(Requirement.of(str(entry)))
            continue
        if not isinstance(entry, list) or not entry or not isinstance(entry[0], sexp.Symbol):
            raise DescriptorError(f"Malformed requirement {sexp.dumps(entry)} {context}".strip())
        version = entry[1] if len(entry) > 1 else None
        try:
            reqs.append(Requirement.of(str(entry[0]), version))
        except InvalidVersionError as exc:
            raise DescriptorError(f"Bad version in requirement {sexp.dumps(entry)}: {exc}") from exc
    return tuple(reqs)


def _plist_value(value: Any) -> Any:
    value = sexp.unquote(value)
    if isinstance(value, sexp.Symbol):
        return str(value)
    return value


def parse_define_package(form: Any, *, install_dir: Optional[Path] = None) -> PackageDescriptor:
    """Build a descriptor from a ``define-package`` form."""
    if not isinstance(form, list) or not form or form[0] != _DEFINE_PACKAGE:
        raise DescriptorError("Not a define-package form")
    if len(form) < 3:
        raise DescriptorError("define-package needs at least a name and a version")
    name, version = form[1], form[2]
    summary = form[3] if len(form) > 3 and isinstance(form[3], str) else ""
    reqs = parse_requirements(form[4] if len(form) > 4 else None, context=f"in {name}")

    extras: Dict[str, Any] = {}
    kind = PackageKind.TAR
    archive: Optional[str] = None
    rest = form[5:]
    if len(rest) % 2:
        raise DescriptorError(f"Odd property list in description of {name}")
    for key, value in zip(rest[::2], rest[1::2]):
        if not isinstance(key, sexp.Symbol) or not key.is_keyword:
            raise DescriptorError(f"Bad property key {key!r} in description of {name}")
        if key == _KIND_KEY:
            kind = PackageKind.parse(_plist_value(value))
        elif key == _ARCHIVE_KEY:
            archive = _plist_value(value)
        else:
            extras[key[1:]] = _plist_value(value)
    try:
        vector = VersionVector.parse(str(version))
    except InvalidVersionError as exc:
        raise DescriptorError(f"Bad version for package {name}: {exc}") from exc
    return PackageDescriptor(
        name=str(name),
        version=vector,
        summary=summary,
        requirements=reqs,
        kind=kind,
        archive=archive,
        install_dir=install_dir,
        extras=extras,
    )


def read_description_file(path: Path) -> PackageDescriptor:
    """Parse ``<dir>/<name>-pkg.el``; the install dir is the file's parent."""
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise DescriptorError(f"Cannot read {path}: {exc}") from exc
    for form in sexp.read_all(text):
        if isinstance(form, list) and form and form[0] == _DEFINE_PACKAGE:
            return parse_define_package(form, install_dir=path.parent)
    raise DescriptorError(f"No define-package form in {path}")


def _requirements_form(reqs) -> Any:
    if not reqs:
        return None
    return [sexp.QUOTE, [[sexp.Symbol(r.name), str(r.min_version)] for r in reqs]]


def _extra_form(value: Any) -> Any:
    if isinstance(value, (list, tuple)) and not isinstance(value, sexp.DottedList):
        return [sexp.QUOTE, list(value)]
    return value


def render_description(desc: PackageDescriptor) -> str:
    """Render the description file text for ``desc``."""
    form: List[Any] = [
        sexp.Symbol(_DEFINE_PACKAGE),
        desc.name,
        str(desc.version),
        desc.summary or "",
        _requirements_form(desc.requirements),
    ]
    if desc.kind is not PackageKind.TAR:
        form += [sexp.Symbol(_KIND_KEY), sexp.Symbol(desc.kind.value)]
    if desc.archive:
        form += [sexp.Symbol(_ARCHIVE_KEY), desc.archive]
    for key in sorted(desc.extras):
        value = desc.extras[key]
        if value is None:
            continue
        form += [sexp.Symbol(f":{key}"), _extra_form(value)]
    return (
        ";;; Generated package description from "
        f"{desc.name}.el  -*- no-byte-compile: t -*-\n"
        f"{sexp.dumps(form)}\n"
    )


def write_description_file(desc: PackageDescriptor, directory: Path) -> Path:
    path = directory / description_file_name(desc.name)
    path.write_text(render_description(desc), encoding="utf-8")
    return path


def parse_library_headers(text: str, *, file_name: Optional[str] = None) -> PackageDescriptor:
    """Derive a single-file descriptor from a library's header comments.

    Requires the ``;;; name.el --- summary`` first line and a ``Version:``
    or ``Package-Version:`` header.
    """
    lines = text.splitlines()
    first = next((line for line in lines if line.strip()), "")
    match = _HEADER_FIRST_LINE.match(first)
    if not match:
        raise DescriptorError(f"Package lacks a file header: {file_name or '<buffer>'}")
    lib_file = match.group("file")
    name = lib_file[:-3] if lib_file.endswith(Constants.SOURCE_SUFFIX) else lib_file
    summary = match.group("summary").strip()

    headers: Dict[str, str] = {}
    continuation: Optional[str] = None
    for line in lines[1:]:
        if line.startswith(";;; Code:"):
            break
        header = _HEADER_LINE.match(line)
        if header:
            key = header.group("key").lower()
            headers.setdefault(key, header.group("value").strip())
            continuation = key
        elif continuation == "package-requires" and line.startswith(";;") and headers[continuation].count("(") > headers[continuation].count(")"):
            headers[continuation] += " " + line.lstrip(";").strip()
        else:
            continuation = None

    version_text = headers.get("package-version") or headers.get("version")
    if not version_text:
        raise DescriptorError(f"Package lacks a \"Version\" or \"Package-Version\" header: {name}")
    try:
        version = VersionVector.parse(version_text)
    except InvalidVersionError as exc:
        raise DescriptorError(f"Bad version header in {name}: {exc}") from exc

    reqs: Tuple[Requirement, ...] = ()
    if headers.get("package-requires"):
        reqs = parse_requirements(sexp.read(headers["package-requires"]), context=f"in {name}")

    extras: Dict[str, Any] = {}
    if headers.get("keywords"):
        extras["keywords"] = [k for k in re.split(r"[,\s]+", headers["keywords"]) if k]
    for key in ("url", "homepage"):
        if headers.get(key):
            extras["url"] = headers[key]
            break
    for key in ("maintainer", "author"):
        if headers.get(key):
            extras[key] = headers[key]
    return PackageDescriptor(
        name=name,
        version=version,
        summary=summary,
        requirements=reqs,
        kind=PackageKind.SINGLE,
        extras=extras,
    )
