import pytest

from k8smetrics.data import ErrorGroup, Grouper, PopulateResult


def test_error_group():
    err = ErrorGroup(
        recoverable=True,
        errors=[ValueError("err1"), ValueError("err2"), ValueError("err3")],
    )
    err.append(ValueError("err4"), ValueError("err5"), ValueError("err6"))
    assert str(err) == "Recoverable error group: err1, err2, err3, err4, err5, err6"


def test_error_group_non_recoverable():
    err = ErrorGroup(errors=[ValueError("err1")])
    assert str(err) == "Non-recoverable error group: err1"
    assert err.recoverable is False


def test_error_group_append_without_arguments_keeps_errors():
    first = ValueError("err1")
    err = ErrorGroup(errors=[first])
    err.append()
    assert err.errors == [first]


def test_error_group_can_be_raised():
    group = ErrorGroup(errors=[ValueError("err1")], recoverable=True)
    assert str(group) == "Recoverable error group: err1"
    with pytest.raises(ErrorGroup) as info:
        raise group
    assert info.value is group
    assert str(info.value) == "Recoverable error group: err1"


def test_populate_result_message():
    result = PopulateResult(errors=[ValueError("err1"), ValueError("err2")])
    assert str(result) == "populate errors:, err1, err2"
    assert result.populated is False


def test_populate_result_empty_message():
    assert str(PopulateResult()) == "populate errors:"


def test_grouper_is_abstract():
    with pytest.raises(TypeError):
        Grouper()