"""Autoload file generation from ``;;;###autoload`` cookies."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, List, Tuple

from common.errors import DescriptorError
from constants import Constants
from packages import sexp

logger = logging.getLogger(__name__)

COOKIE = ";;;###autoload"

_FUNCTION_DEFINERS = {"defun", "defsubst", "cl-defun", "define-inline"}
_MACRO_DEFINERS = {"defmacro", "cl-defmacro"}
_COMMAND_DEFINERS = {
    "define-minor-mode",
    "define-globalized-minor-mode",
    "define-derived-mode",
    "define-generic-mode",
}


def autoloads_file_name(name: str) -> str:
    return f"{name}{Constants.AUTOLOADS_SUFFIX}"


def _is_interactive(body: List[Any]) -> bool:
    for item in body:
        if isinstance(item, list) and item and item[0] == "interactive":
            return True
    return False


def make_autoload(form: Any, file_stem: str) -> Any:
    """Turn a definition into an ``autoload`` form; other forms pass through."""
    if not isinstance(form, list) or len(form) < 2 or not isinstance(form[0], sexp.Symbol):
        return form
    head = str(form[0])
    name = form[1]
    if not isinstance(name, sexp.Symbol):
        return form
    quoted = [sexp.QUOTE, name]
    if head in _FUNCTION_DEFINERS or head in _MACRO_DEFINERS:
        doc = form[3] if len(form) > 3 and isinstance(form[3], str) else None
        interactive = head in _FUNCTION_DEFINERS and _is_interactive(form[3:])
        kind = [sexp.QUOTE, sexp.Symbol("macro")] if head in _MACRO_DEFINERS else None
        return [sexp.Symbol("autoload"), quoted, file_stem, doc, True if interactive else None, kind]
    if head in _COMMAND_DEFINERS:
        doc = next((x for x in form[2:5] if isinstance(x, str)), None)
        return [sexp.Symbol("autoload"), quoted, file_stem, doc, True, None]
    return form


def scan_file(path: Path) -> List[Any]:
    """Collect autoload forms from the cookies in one source file."""
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        logger.warning("Cannot scan %s for autoloads: %s", path, exc)
        return []
    stem = path.name[: -len(Constants.SOURCE_SUFFIX)]
    forms: List[Any] = []
    pos = text.find(COOKIE)
    while pos != -1:
        line_end = text.find("\n", pos)
        line_end = len(text) if line_end == -1 else line_end
        inline = text[pos + len(COOKIE):line_end].strip()
        try:
            if inline:
                form, _ = sexp.read_from(inline, 0)
                forms.append(form)
            else:
                form, _ = sexp.read_from(text, line_end)
                forms.append(make_autoload(form, stem))
        except DescriptorError as exc:
            logger.warning("Skipping autoload cookie in %s: %s", path.name, exc)
        pos = text.find(COOKIE, line_end)
    return forms


def _source_files(directory: Path, name: str) -> List[Path]:
    skip = {autoloads_file_name(name), f"{name}{Constants.DESCRIPTION_SUFFIX}"}
    return sorted(
        p for p in directory.rglob(f"*{Constants.SOURCE_SUFFIX}")
        if p.is_file() and p.name not in skip and not p.name.startswith(".")
    )


def generate_autoloads(name: str, directory: Path) -> Tuple[Path, List[Any]]:
    """Write ``<name>-autoloads.el`` for the package in ``directory``."""
    forms: List[Any] = []
    for path in _source_files(directory, name):
        forms.extend(scan_file(path))
    target = directory / autoloads_file_name(name)
    lines = [
        f";;; {target.name} --- automatically extracted autoloads  -*- lexical-binding: t -*-",
        ";;",
        ";;; Code:",
        "",
    ]
    lines.extend(sexp.dumps(form) for form in forms)
    lines += ["", f";;; {target.name} ends here", ""]
    target.write_text("\n".join(lines), encoding="utf-8")
    logger.debug("Generated %d autoload form(s) for %s", len(forms), name)
    return target, forms
