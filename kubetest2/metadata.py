"""JUnit metadata recorded for the steps of a run."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from math import isinf, isnan
from time import monotonic
from typing import Any, Callable, TextIO

_XML_HEADER = '<?xml version="1.0" encoding="UTF-8"?>'
_INDENT = "    "

_ESCAPES = {
    '"': "&#34;",
    "'": "&#39;",
    "&": "&amp;",
    "<": "&lt;",
    ">": "&gt;",
    "\t": "&#x9;",
    "\n": "&#xA;",
    "\r": "&#xD;",
}


class JUnitError(Exception):
    """An error carrying the command output to record as system-out."""

    def __init__(self, error: object, system_out: str = "") -> None:
        super().__init__(error)
        self._system_out = system_out

    def system_out(self) -> str:
        """Return the captured output (stdout and stderr)."""
        return self._system_out

    def __str__(self) -> str:
        return str(self.args[0])


def _valid_xml_char(ch: str) -> bool:
    code = ord(ch)
    return (
        code in (0x09, 0x0A, 0x0D)
        or 0x20 <= code <= 0xD7FF
        or 0xE000 <= code <= 0xFFFD
        or 0x10000 <= code <= 0x10FFFF
    )


def _escape(text: str) -> str:
    return "".join(
        _ESCAPES.get(ch, ch) if _valid_xml_char(ch) else "\ufffd" for ch in text
    )


def _format_float(value: float) -> str:
    """Format a float as the shortest representation, %g style."""
    if isnan(value):
        return "NaN"
    if isinf(value):
        return "+Inf" if value > 0 else "-Inf"
    if value == 0:
        return "-0" if str(value).startswith("-") else "0"
    sign, digit_tuple, exponent = Decimal(repr(value)).normalize().as_tuple()
    digits = "".join(map(str, digit_tuple))
    count = len(digits)
    point = count + exponent
    exp = point - 1
    prefix = "-" if sign else ""
    if exp < -4 or exp >= 6:
        mantissa = digits[0] + ("." + digits[1:] if count > 1 else "")
        return f"{prefix}{mantissa}e{'-' if exp < 0 else '+'}{abs(exp):02d}"
    if point <= 0:
        return f"{prefix}0.{'0' * -point}{digits}"
    if point >= count:
        return f"{prefix}{digits}{'0' * (point - count)}"
    return f"{prefix}{digits[:point]}.{digits[point:]}"


def _attributes(pairs: list[tuple[str, str]]) -> str:
    return "".join(f' {key}="{_escape(value)}"' for key, value in pairs)


@dataclass
class TestCase:
    """The result of one step; a row in the report."""

    __test__ = False

    name: str
    class_name: str
    time: float = 0.0
    failure: str = ""
    skipped: str = ""
    system_out: str = ""

    def _render(self, depth: int) -> str:
        attrs = _attributes(
            [
                ("name", self.name),
                ("classname", self.class_name),
                ("time", _format_float(self.time)),
            ]
        )
        children = [
            (tag, value)
            for tag, value in (
                ("failure", self.failure),
                ("skipped", self.skipped),
                ("system-out", self.system_out),
            )
            if value
        ]
        if not children:
            return f"<testcase{attrs}></testcase>"
        inner = _INDENT * (depth + 1)
        parts = [f"<testcase{attrs}>"]
        parts.extend(
            f"\n{inner}<{tag}>{_escape(value)}</{tag}>" for tag, value in children
        )
        parts.append(f"\n{_INDENT * depth}</testcase>")
        return "".join(parts)


@dataclass
class TestSuite:
    """A collection of test cases with summary counts."""

    __test__ = False

    name: str
    failures: int = 0
    tests: int = 0
    time: float = 0.0
    cases: list[TestCase] = field(default_factory=list)

    def add_test_case(self, test_case: TestCase) -> None:
        """Append a case and update the counters."""
        self.tests += 1
        if test_case.failure:
            self.failures += 1
        self.cases.append(test_case)

    def write(self, stream: TextIO) -> None:
        """Write the suite as an indented JUnit XML document."""
        stream.write(_XML_HEADER)
        stream.write(self._render())

    def _render(self) -> str:
        attrs = _attributes(
            [
                ("name", self.name),
                ("failures", str(self.failures)),
                ("tests", str(self.tests)),
                ("time", _format_float(self.time)),
            ]
        )
        if not self.cases:
            return f"<testsuite{attrs}></testsuite>"
        body = "".join(f"\n{_INDENT}{case._render(1)}" for case in self.cases)
        return f"<testsuite{attrs}>{body}\n</testsuite>"


class Writer:
    """Records the top-level steps of a run and writes them out as JUnit."""

    def __init__(
        self,
        suite_name: str,
        runner_out: TextIO,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self.suite = TestSuite(name=suite_name)
        self._runner_out = runner_out
        self._clock = clock or monotonic
        self._start = self._clock()

    def wrap_step(self, name: str, do_step: Callable[[], Any]) -> Any:
        """Run ``do_step`` and record its outcome; exceptions propagate."""
        start = self._clock()
        error: Exception | None = None
        result = None
        try:
            result = do_step()
        except Exception as exc:
            error = exc
        finish = self._clock()
        case = TestCase(name=name, class_name=self.suite.name, time=finish - start)
        if error is not None:
            case.failure = str(error)
            system_out = getattr(error, "system_out", None)
            if callable(system_out):
                case.system_out = system_out()
        self.suite.add_test_case(case)
        if error is not None:
            raise error
        return result

    def finish(self) -> None:
        """Finalise the total time and write the suite."""
        self.suite.time = self._clock() - self._start
        self.suite.write(self._runner_out)