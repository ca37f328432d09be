"""Line writer used for every generated C++ file.

The writer owns indentation and blank line handling so the emitters only
decide *what* to print.  Blank lines never stack and never open a file.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator, List, Sequence


class CodeWriter:
    """Incremental C++ pretty printer."""

    def __init__(self, indent: str = "\t") -> None:
        self._indent = 0
        self._indent_unit = indent
        self._lines: List[str] = []
        self._pending_blank = False
        self._saw_content = False

    # ------------------------------------------------------------------
    # basic line emission helpers
    # ------------------------------------------------------------------
    def write_line(self, text: str = "", *, align: bool = True) -> None:
        """Append ``text`` at the current indentation.

        An empty ``text`` schedules a blank line which only materialises once
        something else is written.  ``align=False`` writes at column zero.
        """

        if not text:
            if self._saw_content:
                self._pending_blank = True
            return

        if self._pending_blank:
            self._lines.append("")
            self._pending_blank = False

        if align:
            self._lines.append(f"{self._indent_unit * self._indent}{text}")
        else:
            self._lines.append(text)
        self._saw_content = True

    def write_lines(self, lines: Sequence[str]) -> None:
        for line in lines:
            self.write_line(line)

    def write_label(self, label: str) -> None:
        """Emit a ``goto`` target at column zero."""

        self.write_line(f"{label}:", align=False)

    def write_comment(self, text: str) -> None:
        self.write_line(f"// {text}" if text else "//")

    def ensure_blank_line(self) -> None:
        if self._lines and self._lines[-1] == "":
            return
        if not self._saw_content:
            return
        self._pending_blank = True

    # ------------------------------------------------------------------
    # indentation helpers
    # ------------------------------------------------------------------
    @contextmanager
    def indented(self) -> Iterator[None]:
        self.indent()
        try:
            yield
        finally:
            self.dedent()

    @contextmanager
    def block(self, header: str, closer: str = "}") -> Iterator[None]:
        """``header {`` ... ``}`` with the body indented one level."""

        self.write_line(f"{header} {{")
        with self.indented():
            yield
        self.write_line(closer)

    def indent(self) -> None:
        self._indent += 1

    def dedent(self) -> None:
        if self._indent == 0:
            raise ValueError("indentation underflow")
        self._indent -= 1

    # ------------------------------------------------------------------
    # rendering helpers
    # ------------------------------------------------------------------
    @property
    def lines(self) -> Sequence[str]:
        return tuple(self._lines)

    def extend(self, other: "CodeWriter") -> None:
        """Append the already indented lines of ``other`` verbatim."""

        for line in other.lines:
            self.write_line(line, align=False)

    def render(self) -> str:
        return "\n".join(self._lines).rstrip() + "\n"


__all__ = ["CodeWriter"]
