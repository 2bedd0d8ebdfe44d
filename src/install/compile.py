"""Compile capability run after unpacking.

The compiler is an externally supplied service; ``ReaderCompiler`` is the
built-in default and only checks that every source file reads cleanly.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Protocol

from common.errors import DescriptorError
from constants import Constants
from packages import sexp

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CompileFailure:
    path: Path
    message: str

    def __str__(self) -> str:
        return f"{self.path.name}: {self.message}"


class Compiler(Protocol):
    def compile_directory(self, directory: Path) -> List[CompileFailure]:
        """Compile every source file under ``directory``; return failures."""


class ReaderCompiler:
    """Syntax check through the s-expression reader."""

    def compile_directory(self, directory: Path) -> List[CompileFailure]:
        failures: List[CompileFailure] = []
        for path in sorted(directory.rglob(f"*{Constants.SOURCE_SUFFIX}")):
            try:
                text = path.read_text(encoding="utf-8")
                if "no-byte-compile: t" in text.split("\n", 1)[0]:
                    continue
                sexp.read_all(text)
            except (OSError, UnicodeDecodeError, DescriptorError) as exc:
                failures.append(CompileFailure(path=path, message=str(exc)))
        return failures
