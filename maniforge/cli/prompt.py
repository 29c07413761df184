"""Console prompts used to fill manifest fields."""

from __future__ import annotations

import sys
from typing import Callable, Protocol, TextIO

from maniforge.core.errors import InputValidationError


class Prompter(Protocol):
    def ask(
        self,
        label: str,
        default: str | None = None,
        *,
        required: bool = True,
        check: Callable[[str], None] | None = None,
    ) -> str | None:
        ...

    def confirm(self, question: str, default: bool = False) -> bool:
        ...


class ConsolePrompter:
    """Ask questions on stdin; the default answer is used for an empty reply."""

    def __init__(
        self,
        input_func: Callable[[str], str] = input,
        output: TextIO | None = None,
    ) -> None:
        self._input = input_func
        self._output = output or sys.stderr

    def _read(self, text: str) -> str:
        try:
            return self._input(text).strip()
        except EOFError as exc:
            raise InputValidationError(f"No input available for: {text.strip()}") from exc

    def ask(
        self,
        label: str,
        default: str | None = None,
        *,
        required: bool = True,
        check: Callable[[str], None] | None = None,
    ) -> str | None:
        suffix = f" [{default}]" if default else ""
        while True:
            answer = self._read(f"{label}{suffix}: ") or default
            if not answer:
                if not required:
                    return None
                print(f"{label} is required.", file=self._output)
                continue
            if check is not None:
                try:
                    check(answer)
                except InputValidationError as exc:
                    print(str(exc), file=self._output)
                    continue
            return answer

    def confirm(self, question: str, default: bool = False) -> bool:
        hint = "Y/n" if default else "y/N"
        answer = self._read(f"{question} [{hint}]: ").lower()
        if not answer:
            return default
        return answer in {"y", "yes"}


class ScriptedPrompter:
    """Answer prompts from a mapping of label to reply, falling back to defaults."""

    def __init__(self, answers: dict[str, str] | None = None, confirm: bool = False) -> None:
        self.answers = dict(answers or {})
        self.asked: list[str] = []
        self._confirm = confirm

    def ask(
        self,
        label: str,
        default: str | None = None,
        *,
        required: bool = True,
        check: Callable[[str], None] | None = None,
    ) -> str | None:
        self.asked.append(label)
        answer = self.answers.get(label) or default
        if not answer and required:
            raise InputValidationError(f"{label} is required")
        if answer and check is not None:
            check(answer)
        return answer

    def confirm(self, question: str, default: bool = False) -> bool:
        return self._confirm
