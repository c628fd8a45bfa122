"""Lightweight structural checks for generated TSX/JSX/TS code.

Not a parser: a single character scan keeps signed counters for ``{}``,
``()`` and ``[]`` while skipping string literals, comments and template
literal text (``${`` re-enters code), then a second pass compares opening
and closing counts of capitalised JSX tags.  Every problem is a distinct,
human-readable string so the generation loop can feed it back to the model.

The gate accepts odd-but-balanced code; it must not reject valid code, so
quote handling errs towards treating ambiguous quotes as plain text.
"""

from __future__ import annotations

import concurrent.futures
import logging
import re
from collections import Counter
from collections.abc import Callable, Iterable, Sequence

from cro_autofix.domain.values import (
    CodePatch,
    NewFile,
    SyntaxReport,
    SyntaxValidationResult,
    ValidationResult,
)

logger = logging.getLogger(__name__)

_CODE = 0
_STRING = 1
_TEMPLATE = 2
_LINE_COMMENT = 3
_BLOCK_COMMENT = 4

_PAIRS = (
    ("{", "}", "braces"),
    ("(", ")", "parentheses"),
    ("[", "]", "brackets"),
)
_CLOSERS = {close: open_ for open_, close, _ in _PAIRS}

_TAG_NAME = re.compile(r"[A-Z][A-Za-z0-9_.]*")
_CLOSE_TAG = re.compile(r"</([A-Z][A-Za-z0-9_.]*)\s*>")
_GENERIC_TAIL = re.compile(r"\s*(,|extends\b)")
# characters that can follow an operand in an expression but never a tag name
_COMPARISON_FOLLOWERS = ";)]&|+-*%?:,=!"

MISSING_OLD_CODE = "Old code not found in file - file may have been modified"
ALREADY_APPLIED = "New code already exists in file - patch may have already been applied"


# ---------------------------------------------------------------------------
# Scanning
# ---------------------------------------------------------------------------


def _closing_quote(code: str, start: int, quote: str) -> int:
    """Index of the quote closing the literal opened at *start*, or -1.

    Single and double quoted literals cannot span lines.
    """
    i = start + 1
    while i < len(code):
        ch = code[i]
        if ch == "\\":
            i += 2
            continue
        if ch == quote:
            return i
        if ch == "\n":
            return -1
        i += 1
    return -1


def _is_word_apostrophe(code: str, i: int) -> bool:
    return 0 < i < len(code) - 1 and code[i - 1].isalnum() and code[i + 1].isalpha()


def _scan(code: str) -> tuple[dict[str, int], str]:
    """Return delimiter balances and *code* with literal/comment text blanked.

    Blanking keeps offsets and newlines so the tag pass sees the same
    layout without the contents of strings and comments.
    """
    counts = {open_: 0 for open_, _, _ in _PAIRS}
    masked = list(code)
    template_depths: list[int] = []  # brace balance right after each "${"
    state = _CODE
    n = len(code)
    i = 0

    def blank(start: int, stop: int) -> None:
        for k in range(start, min(stop, n)):
            if masked[k] != "\n":
                masked[k] = " "

    while i < n:
        ch = code[i]
        nxt = code[i + 1] if i + 1 < n else ""

        if state == _CODE:
            if ch in "\"'":
                end = -1 if (ch == "'" and _is_word_apostrophe(code, i)) else _closing_quote(code, i, ch)
                if end >= 0:
                    blank(i + 1, end)
                    i = end + 1
                    continue
                # unterminated on this line: plain text such as JSX copy
            elif ch == "`":
                state = _TEMPLATE
            elif ch == "/" and nxt == "/":
                state = _LINE_COMMENT
                blank(i, i + 2)
                i += 2
                continue
            elif ch == "/" and nxt == "*":
                state = _BLOCK_COMMENT
                blank(i, i + 2)
                i += 2
                continue
            elif ch in counts:
                counts[ch] += 1
            elif ch == "}" and template_depths and counts["{"] == template_depths[-1]:
                template_depths.pop()
                counts["{"] -= 1
                state = _TEMPLATE
            elif ch in _CLOSERS:
                counts[_CLOSERS[ch]] -= 1

        elif state == _TEMPLATE:
            if ch == "\\":
                blank(i, i + 2)
                i += 2
                continue
            if ch == "`":
                state = _CODE
            elif ch == "$" and nxt == "{":
                counts["{"] += 1
                template_depths.append(counts["{"])
                state = _CODE
                i += 2
                continue
            else:
                blank(i, i + 1)

        elif state == _LINE_COMMENT:
            if ch == "\n":
                state = _CODE
            else:
                blank(i, i + 1)

        elif state == _BLOCK_COMMENT:
            if ch == "*" and nxt == "/":
                blank(i, i + 2)
                state = _CODE
                i += 2
                continue
            blank(i, i + 1)

        i += 1

    return counts, "".join(masked)


def _is_comparison(masked: str, lt: int, name_end: int) -> bool:
    """``i <Max;`` or ``a < b && b <Limit)``: a less-than, not an element."""
    j = lt - 1
    while j >= 0 and masked[j].isspace():
        j -= 1
    if j < 0 or not (masked[j].isalnum() or masked[j] in "_$)]"):
        return False
    k = name_end
    while k < len(masked) and masked[k].isspace():
        k += 1
    return k == len(masked) or masked[k] in _COMPARISON_FOLLOWERS


def _scan_tags(masked: str) -> tuple[Counter[str], Counter[str]]:
    """Count non-self-closing opening tags and closing tags by name."""
    opened: Counter[str] = Counter()
    closed: Counter[str] = Counter()
    n = len(masked)
    i = masked.find("<")
    while i >= 0:
        close_match = _CLOSE_TAG.match(masked, i)
        if close_match:
            closed[close_match.group(1)] += 1
            i = masked.find("<", close_match.end())
            continue

        name_match = _TAG_NAME.match(masked, i + 1)
        prev = masked[i - 1] if i > 0 else ""
        # useState<Product>, Array<Item>: type arguments, not elements
        if (
            name_match is None
            or prev.isalnum()
            or (prev != "" and prev in "_$.")
            or _GENERIC_TAIL.match(masked, name_match.end())
            or _is_comparison(masked, i, name_match.end())
        ):
            i = masked.find("<", i + 1)
            continue

        depth = 0
        k = name_match.end()
        while k < n:
            c = masked[k]
            if c == "{":
                depth += 1
            elif c == "}":
                depth = max(depth - 1, 0)
            elif c == ">" and depth == 0:
                break
            k += 1
        if k >= n:
            break
        if not masked[i:k].rstrip().endswith("/"):
            opened[name_match.group(0)] += 1
        i = masked.find("<", k + 1)
    return opened, closed


def check_syntax(code: str) -> list[str]:
    """Return structural errors in *code*; an empty list means it passed."""
    counts, masked = _scan(code)
    errors: list[str] = []
    for open_, close, label in _PAIRS:
        diff = counts[open_]
        if diff > 0:
            errors.append(f"Unbalanced {label}: missing {close} (diff: {diff})")
        elif diff < 0:
            errors.append(f"Unbalanced {label}: extra {close} (diff: {-diff})")

    opened, closed = _scan_tags(masked)
    names = sorted(set(opened) | set(closed))
    unbalanced = [n for n in names if opened[n] and opened[n] != closed[n]]
    stray = [n for n in names if not opened[n] and closed[n]]
    stray_note = ", ".join(f"</{n}>" for n in stray)
    for name in unbalanced:
        message = (
            f"JSX tag mismatch: <{name}> opened {opened[name]} time(s) "
            f"but closed {closed[name]} time(s)"
        )
        if stray:
            message += f"; unmatched closing tag(s): {stray_note}"
        errors.append(message)
    if not unbalanced:
        for name in stray:
            errors.append(
                f"JSX tag mismatch: </{name}> closed {closed[name]} time(s) but never opened"
            )
    return errors


def introduced_errors(before: str, after: str) -> list[str]:
    """Errors present in *after* that *before* did not already have."""
    baseline = Counter(check_syntax(before))
    found: list[str] = []
    for error in check_syntax(after):
        if baseline[error]:
            baseline[error] -= 1
        else:
            found.append(error)
    return found


# ---------------------------------------------------------------------------
# Patch-level validation
# ---------------------------------------------------------------------------


def merge_patch(content: str, patch: CodePatch) -> str | None:
    """Replace the first occurrence of ``old_code``; ``None`` if absent."""
    if not patch.old_code or patch.old_code not in content:
        return None
    return content.replace(patch.old_code, patch.new_code, 1)


def validate_patch(patch: CodePatch, current_content: str | None = None) -> ValidationResult:
    """Check one patch.

    Without *current_content* the new code is compared with the old code
    (fragments are rarely balanced on their own).  With it, the patch must
    apply and the merged file must not gain structural errors.
    """
    issues: list[str] = []
    if not patch.old_code:
        issues.append("Old code is empty")
        return ValidationResult(valid=False, issues=tuple(issues))

    if current_content is None:
        issues.extend(introduced_errors(patch.old_code, patch.new_code))
        return ValidationResult(valid=not issues, issues=tuple(issues))

    merged = merge_patch(current_content, patch)
    if merged is None:
        if patch.new_code and patch.new_code in current_content:
            issues.append(ALREADY_APPLIED)
        else:
            issues.append(MISSING_OLD_CODE)
        return ValidationResult(valid=False, issues=tuple(issues))

    issues.extend(introduced_errors(current_content, merged))
    return ValidationResult(valid=not issues, issues=tuple(issues))


def _validate_file_group(
    path: str,
    patches: Sequence[tuple[int, CodePatch]],
    read_file: Callable[[str], str] | None,
) -> list[tuple[int, SyntaxValidationResult]]:
    """Validate patches against one file in order, each on top of the last."""
    content: str | None = None
    if read_file is not None:
        try:
            content = read_file(path)
        except OSError as exc:
            return [
                (index, SyntaxValidationResult(path, False, (f"Could not read {path}: {exc}",)))
                for index, _ in patches
            ]

    results: list[tuple[int, SyntaxValidationResult]] = []
    for index, patch in patches:
        outcome = validate_patch(patch, content)
        results.append((index, SyntaxValidationResult(path, outcome.valid, outcome.issues)))
        if content is not None and outcome.valid:
            content = merge_patch(content, patch)
    return results


def validate_all(
    patches: Iterable[CodePatch],
    new_files: Iterable[NewFile] = (),
    read_file: Callable[[str], str] | None = None,
    max_workers: int = 4,
) -> SyntaxReport:
    """Validate every patch and new file; results keep input order.

    Patches on the same file are checked sequentially (each on top of the
    previous); different files and new files are checked in parallel.
    """
    patch_list = list(patches)
    file_list = list(new_files)
    groups: dict[str, list[tuple[int, CodePatch]]] = {}
    for index, patch in enumerate(patch_list):
        groups.setdefault(patch.file_path, []).append((index, patch))

    slots: list[SyntaxValidationResult | None] = [None] * (len(patch_list) + len(file_list))
    with concurrent.futures.ThreadPoolExecutor(max_workers=max(1, max_workers)) as pool:
        group_futures = [
            pool.submit(_validate_file_group, path, group, read_file)
            for path, group in groups.items()
        ]
        file_futures = {
            len(patch_list) + offset: pool.submit(check_syntax, new_file.content)
            for offset, new_file in enumerate(file_list)
        }
        for future in group_futures:
            for index, result in future.result():
                slots[index] = result
        for index, future in file_futures.items():
            errors = future.result()
            path = file_list[index - len(patch_list)].path
            slots[index] = SyntaxValidationResult(path, not errors, tuple(errors))

    results = tuple(r for r in slots if r is not None)
    failed = sum(1 for r in results if not r.valid)
    if not results:
        summary = "Nothing to validate"
    elif failed:
        summary = f"{failed} of {len(results)} target(s) failed syntax validation"
    else:
        summary = f"All {len(results)} target(s) passed syntax validation"
    if failed:
        logger.debug("Syntax validation: %s", summary)
    return SyntaxReport(valid=failed == 0, summary=summary, results=results)
