import io

from ppcrecomp.errors import ErrorCategory, ErrorCollector


def test_empty_collector_reports_nothing() -> None:
    errors = ErrorCollector()

    assert not errors.has_errors
    assert len(errors) == 0
    assert errors.render() == "No analysis errors\n"


def test_report_groups_by_category_in_declaration_order() -> None:
    errors = ErrorCollector()
    errors.add(ErrorCategory.UNIMPLEMENTED_INSN, 0x82000010, "no builder for foo")
    errors.add(
        ErrorCategory.UNRESOLVED_CALL,
        0x82001000,
        "bl 0x82001000 from 0x82000004 - target not in any function",
        secondary=0x82000004,
    )
    errors.add(ErrorCategory.UNRESOLVED_CALL, 0x82002000, "second")

    assert errors.has_errors
    assert errors.count() == 3
    assert errors.count(ErrorCategory.UNRESOLVED_CALL) == 2
    assert errors.summary()[ErrorCategory.UNIMPLEMENTED_INSN] == 1

    stream = io.StringIO()
    errors.print_report(stream)
    lines = stream.getvalue().splitlines()

    assert lines[0] == "UnresolvedCall (2):"
    assert lines[1] == (
        "  0x82001000 from 0x82000004: bl 0x82001000 from 0x82000004 - target not in any function"
    )
    assert lines[3] == "UnimplementedInsn (1):"
    assert lines[-1] == "Total: 3 errors"


def test_entries_are_a_snapshot() -> None:
    errors = ErrorCollector()
    errors.add(ErrorCategory.MISSING_JUMP_TABLE, 0x82000000, "bctr")
    snapshot = errors.entries
    errors.add(ErrorCategory.DISCONTINUOUS_FUNCTION, 0x82000100, "gap")

    assert len(snapshot) == 1
    assert [entry.category for entry in errors] == [
        ErrorCategory.MISSING_JUMP_TABLE,
        ErrorCategory.DISCONTINUOUS_FUNCTION,
    ]
