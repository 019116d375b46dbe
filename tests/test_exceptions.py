"""Tests for the error records surfaced to callers."""

import pytest

from tomoon_control.core.exceptions import (
    ConfigFormatError,
    ConfigNotFoundError,
    CoreError,
    CoreNotFoundError,
    ErrorKind,
    LockError,
    NetworkError,
    RuleProviderDownloadError,
)


@pytest.mark.parametrize(
    ("error_cls", "kind"),
    [
        (CoreNotFoundError, "CoreNotFound"),
        (ConfigFormatError, "ConfigFormatError"),
        (ConfigNotFoundError, "ConfigNotFound"),
        (RuleProviderDownloadError, "RuleProviderDownloadError"),
        (NetworkError, "NetworkError"),
        (LockError, "Default"),
        (CoreError, "Default"),
    ],
)
def test_error_record(error_cls: type[CoreError], kind: str) -> None:
    error = error_cls("something broke")

    assert error.to_dict() == {"kind": kind, "message": "something broke"}
    assert str(error) == f"Error Kind: {kind}, Error Message: something broke"


def test_kind_set_is_closed() -> None:
    assert {kind.value for kind in ErrorKind} == {
        "CoreNotFound",
        "ConfigFormatError",
        "ConfigNotFound",
        "RuleProviderDownloadError",
        "NetworkError",
        "Default",
    }


def test_explicit_kind_overrides_default() -> None:
    error = CoreError("no route", ErrorKind.NETWORK_ERROR)

    assert error.kind is ErrorKind.NETWORK_ERROR
    assert isinstance(error, Exception)
