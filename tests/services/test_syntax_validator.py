"""Tests for the structural syntax gate."""

from __future__ import annotations

import pytest

from cro_autofix.domain.values import CodePatch, NewFile
from cro_autofix.services.syntax_validator import (
    ALREADY_APPLIED,
    MISSING_OLD_CODE,
    check_syntax,
    introduced_errors,
    merge_patch,
    validate_all,
    validate_patch,
)


class TestCheckSyntax:
    def test_balanced_object(self) -> None:
        assert check_syntax("const x = { a: 1 }") == []

    def test_missing_brace(self) -> None:
        errors = check_syntax("const x = { a: 1")
        assert errors == ["Unbalanced braces: missing } (diff: 1)"]

    def test_tag_mismatch_names_both_tags(self) -> None:
        errors = check_syntax("<Foo>text</Bar>")
        assert len(errors) == 1
        assert "Foo" in errors[0]
        assert "Bar" in errors[0]

    def test_extra_closers(self) -> None:
        errors = check_syntax("call(a));")
        assert errors == ["Unbalanced parentheses: extra ) (diff: 1)"]

    def test_each_counter_reported_separately(self) -> None:
        errors = check_syntax("fn({ items: [1, 2")
        assert len(errors) == 3

    @pytest.mark.parametrize(
        "code",
        [
            'const s = "not a { brace";',
            "const s = 'closing ) paren';",
            "const t = `width: ${size}px; {literal`;",
            "const t = `outer ${cond ? `inner ${x}` : '}'} end`;",
            "// a comment with { and (\nconst a = 1;",
            "/* block { comment ( */ const b = [1];",
            "<p>Don't miss the sale, it's today only</p>",
            "<Modal open={open}><Gallery images={images} /></Modal>",
            "const [items, setItems] = useState<Product[]>([]);",
            "function pick<T, K extends keyof T>(obj: T, key: K) { return obj[key]; }",
            "<Card.Body>ok</Card.Body>",
            "const ok = count <Max && count > 0;",
            "for (let i = 0; i <Limit; i++) { total += i; }",
            "if (a <Max) { run(); }",
            "const ok = a < Max;",
            "function View() { return <Modal open>hi</Modal>; }",
        ],
    )
    def test_valid_code_passes(self, code: str) -> None:
        assert check_syntax(code) == []

    def test_unclosed_component(self) -> None:
        errors = check_syntax("<Modal open={open}><div>hi</div>")
        assert errors == ["JSX tag mismatch: <Modal> opened 1 time(s) but closed 0 time(s)"]

    def test_unclosed_component_after_return(self) -> None:
        errors = check_syntax("function View() { return <Modal open>hi; }")
        assert errors == ["JSX tag mismatch: <Modal> opened 1 time(s) but closed 0 time(s)"]

    def test_stray_closing_tag(self) -> None:
        errors = check_syntax("<div></Modal>")
        assert errors == ["JSX tag mismatch: </Modal> closed 1 time(s) but never opened"]


class TestPatchValidation:
    def test_fragment_compared_with_old_code(self) -> None:
        patch = CodePatch("a.tsx", "<div>", "<div onClick={() => open()}>")
        assert validate_patch(patch).valid

    def test_fragment_introducing_error(self) -> None:
        patch = CodePatch("a.tsx", "<div>", "<div onClick={() => open()>")
        result = validate_patch(patch)
        assert not result.valid
        assert result.issues == ("Unbalanced braces: missing } (diff: 1)",)

    def test_empty_old_code(self) -> None:
        result = validate_patch(CodePatch("a.tsx", "", "x"))
        assert result.issues == ("Old code is empty",)

    def test_against_file_content(self) -> None:
        content = "function A() {\n  return <div>hi</div>;\n}\n"
        ok = CodePatch("a.tsx", "<div>hi</div>", "<section>hi</section>")
        assert validate_patch(ok, content).valid

        missing = CodePatch("a.tsx", "<span>", "<p>")
        assert validate_patch(missing, content).issues == (MISSING_OLD_CODE,)

        applied = CodePatch("a.tsx", "<h1>hi</h1>", "<div>hi</div>")
        assert validate_patch(applied, content).issues == (ALREADY_APPLIED,)

    def test_pre_existing_errors_are_not_blamed_on_the_patch(self) -> None:
        content = "const broken = {\nconst label = 'a';\n"
        patch = CodePatch("a.tsx", "'a'", "'b'")
        assert validate_patch(patch, content).valid
        assert introduced_errors(content, content + "}") == []

    def test_merge_patch_first_occurrence_only(self) -> None:
        assert merge_patch("a a a", CodePatch("f", "a", "b")) == "b a a"
        assert merge_patch("a", CodePatch("f", "z", "b")) is None


class TestValidateAll:
    def test_results_keep_input_order(self) -> None:
        files = {"a.tsx": "const a = 1;\n", "b.tsx": "const b = 2;\n"}
        patches = [
            CodePatch("a.tsx", "1", "{ x: 1 }"),
            CodePatch("b.tsx", "2", "[2"),
            CodePatch("a.tsx", "{ x: 1 }", "{ x: 2 }"),
        ]
        report = validate_all(patches, [NewFile("c.tsx", "export {}")], read_file=files.__getitem__)
        assert [r.target for r in report.results] == ["a.tsx", "b.tsx", "a.tsx", "c.tsx"]
        assert [r.valid for r in report.results] == [True, False, True, True]
        assert not report.valid
        assert report.summary == "1 of 4 target(s) failed syntax validation"
        assert report.errors == ["b.tsx: Unbalanced brackets: missing ] (diff: 1)"]

    def test_all_pass(self) -> None:
        report = validate_all([], [NewFile("c.tsx", "export const C = () => <div />;")])
        assert report.valid
        assert report.summary == "All 1 target(s) passed syntax validation"

    def test_nothing(self) -> None:
        assert validate_all([]).summary == "Nothing to validate"

    def test_unreadable_file(self) -> None:
        def read(path: str) -> str:
            raise FileNotFoundError(path)

        report = validate_all([CodePatch("gone.tsx", "a", "b")], read_file=read)
        assert not report.valid
        assert report.results[0].errors[0].startswith("Could not read gone.tsx")
