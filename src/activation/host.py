"""Model of the running process that packages are activated into."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Set

from packages import sexp

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AutoloadEntry:
    """A function registered to load lazily from ``file``."""

    function: str
    file: str
    docstring: Optional[str] = None
    interactive: bool = False
    macro: bool = False


@dataclass
class ExtensionHost:
    """Load path, autoload registry, provided features and load history.

    ``load_file`` evaluates the declarative subset of Lisp found in autoload
    files: ``autoload``, ``provide``, ``progn`` and ``add-to-list`` on
    ``load-path``. Other forms are recorded as evaluated and otherwise ignored.
    """

    load_path: List[Path] = field(default_factory=list)
    autoloads: Dict[str, AutoloadEntry] = field(default_factory=dict)
    features: Set[str] = field(default_factory=set)
    load_history: List[Path] = field(default_factory=list)

    def add_to_load_path(self, directory: Path) -> bool:
        """Prepend ``directory`` unless already present."""
        directory = Path(directory)
        if directory in self.load_path:
            return False
        self.load_path.insert(0, directory)
        return True

    def was_loaded(self, file_name: str) -> bool:
        """True when a file with this base name was loaded from any directory."""
        return any(path.name == file_name for path in self.load_history)

    def load_file(self, path: Path) -> int:
        """Evaluate ``path``; return the number of forms evaluated.

        Raises:
            OSError: The file cannot be read.
            DescriptorError: The file does not read as Lisp data.
        """
        path = Path(path)
        text = path.read_text(encoding="utf-8")
        forms = sexp.read_all(text)
        for form in forms:
            self._eval(form, path)
        self.load_history.append(path)
        logger.debug("Loaded %s (%d forms)", path, len(forms))
        return len(forms)

    def provide(self, feature: str) -> None:
        self.features.add(feature)

    def featurep(self, feature: str) -> bool:
        return feature in self.features

    def _eval(self, form: Any, path: Path) -> None:
        if not isinstance(form, list) or not form or not isinstance(form[0], sexp.Symbol):
            return
        head = str(form[0])
        if head == "progn":
            for sub in form[1:]:
                self._eval(sub, path)
        elif head == "autoload" and len(form) >= 3:
            self._register_autoload(form, path)
        elif head == "provide" and len(form) >= 2:
            feature = sexp.unquote(form[1])
            if isinstance(feature, sexp.Symbol):
                self.provide(str(feature))
        elif head == "add-to-list" and len(form) >= 3 and sexp.unquote(form[1]) == "load-path":
            # (add-to-list 'load-path (directory-file-name ...)) in autoload files
            self.add_to_load_path(path.parent)

    def _register_autoload(self, form: List[Any], path: Path) -> None:
        function = sexp.unquote(form[1])
        if not isinstance(function, sexp.Symbol):
            return
        file_name = form[2] if isinstance(form[2], str) else path.stem
        doc = form[3] if len(form) > 3 and isinstance(form[3], str) else None
        interactive = len(form) > 4 and form[4] is not None
        macro = len(form) > 5 and sexp.unquote(form[5]) == "macro"
        self.autoloads[str(function)] = AutoloadEntry(
            function=str(function),
            file=file_name,
            docstring=doc,
            interactive=interactive,
            macro=macro,
        )
