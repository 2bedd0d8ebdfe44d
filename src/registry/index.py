"""Archive index (``archive-contents``) parsing and rendering.

The index is a single form::

    (1
     (foo . [(1 0) ((bar (2 0))) "Summary" tar ((:url . "https://...") (:keywords "a" "b"))])
     ...)

The leading integer is the index format version.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List

from common.errors import DescriptorError, FetchError, InvalidVersionError
from constants import Constants
from packages import sexp
from packages.description import parse_requirements
from packages.descriptor import PackageDescriptor, PackageKind
from versioning.vector import VersionVector

logger = logging.getLogger(__name__)


def _extras_from_alist(value: Any) -> Dict[str, Any]:
    extras: Dict[str, Any] = {}
    if not isinstance(value, list):
        return extras
    for entry in value:
        if isinstance(entry, sexp.DottedList):
            key = entry.items[0]
            rest = list(entry.items[1:])
            val = entry.tail if not rest else tuple(rest + [entry.tail])
        elif isinstance(entry, list) and entry:
            key = entry[0]
            val = entry[1:]
        else:
            continue
        if isinstance(key, sexp.Symbol):
            extras[key.lstrip(":")] = val
    return extras


def _entry_to_descriptor(entry: Any, archive: str) -> PackageDescriptor:
    if not isinstance(entry, sexp.DottedList) or len(entry.items) != 1 or not isinstance(entry.tail, tuple):
        raise DescriptorError(f"Malformed index entry: {sexp.dumps(entry)[:80]}")
    name = str(entry.items[0])
    fields = entry.tail
    if len(fields) < 4:
        raise DescriptorError(f"Index entry for {name} has {len(fields)} fields, expected at least 4")
    version_list, reqs, summary, kind = fields[:4]
    extras = _extras_from_alist(fields[4]) if len(fields) > 4 else {}
    if not isinstance(version_list, list) or not all(isinstance(v, int) for v in version_list):
        raise DescriptorError(f"Index entry for {name} has a malformed version")
    try:
        return PackageDescriptor(
            name=name,
            version=VersionVector(version_list),
            summary=summary if isinstance(summary, str) else "",
            requirements=parse_requirements(reqs, context=f"in {name}"),
            kind=PackageKind.parse(kind),
            archive=archive,
            extras=extras,
        )
    except InvalidVersionError as exc:
        raise DescriptorError(f"Index entry for {name}: {exc}") from exc


def parse_archive_contents(text: str, archive: str) -> List[PackageDescriptor]:
    """Parse an index; malformed entries are skipped with a warning.

    Raises:
        FetchError: The text is not an index or uses a newer format version.
    """
    try:
        form = sexp.read(text)
    except DescriptorError as exc:
        raise FetchError(f"Unreadable archive contents: {exc}", archive=archive) from exc
    if not isinstance(form, list) or not form or not isinstance(form[0], int):
        raise FetchError("Archive contents lack a format version", archive=archive)
    if form[0] > Constants.ARCHIVE_FORMAT_VERSION:
        raise FetchError(
            f"Package archive version {form[0]} is higher than {Constants.ARCHIVE_FORMAT_VERSION}",
            archive=archive,
        )
    out: List[PackageDescriptor] = []
    for entry in form[1:]:
        try:
            desc = _entry_to_descriptor(entry, archive)
        except DescriptorError as exc:
            logger.warning("Ignoring entry in archive %s: %s", archive, exc)
            continue
        if desc.kind not in (PackageKind.SINGLE, PackageKind.TAR):
            logger.warning("Ignoring %s in archive %s: kind '%s' cannot be downloaded",
                           desc.full_name, archive, desc.kind.value)
            continue
        out.append(desc)
    return out


def _extras_to_alist(extras: Dict[str, Any]) -> Any:
    alist = []
    for key in sorted(extras):
        value = extras[key]
        sym = sexp.Symbol(f":{key}")
        if isinstance(value, (list, tuple)):
            alist.append([sym, *value])
        else:
            alist.append(sexp.DottedList((sym,), value))
    return alist or None


def render_archive_contents(descriptors: Iterable[PackageDescriptor]) -> str:
    """Render descriptors as an index in the current format."""
    entries: List[Any] = [Constants.ARCHIVE_FORMAT_VERSION]
    for desc in descriptors:
        reqs = [[sexp.Symbol(r.name), list(r.min_version.parts)] for r in desc.requirements] or None
        fields = (
            list(desc.version.parts),
            reqs,
            desc.summary,
            sexp.Symbol(desc.kind.value),
            _extras_to_alist(dict(desc.extras)),
        )
        entries.append(sexp.DottedList((sexp.Symbol(desc.name),), fields))
    return sexp.dumps(entries) + "\n"
