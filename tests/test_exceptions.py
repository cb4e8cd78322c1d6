import json
import logging

import pytest

from cacheflow.utils.exceptions import (
    BackendError,
    CacheflowError,
    ConfigurationError,
    NotFoundError,
    log_exception,
    wrap_exception,
)


def test_hierarchy_and_codes():
    for cls, code in (
        (ConfigurationError, "configuration_error"),
        (NotFoundError, "not_found"),
        (BackendError, "backend_error"),
    ):
        err = cls("boom")
        assert isinstance(err, CacheflowError)
        assert isinstance(err, RuntimeError)
        assert err.code == code


def test_to_dict_and_str():
    cause = OSError("disk full")
    err = BackendError("Failed to write", context={"key": "k"}, cause=cause)
    payload = err.to_dict()
    assert payload["error"] == "backend_error"
    assert payload["context"] == {"key": "k"}
    assert payload["cause"] == {"type": "OSError", "message": "disk full"}
    assert json.loads(str(err))["message"] == "Failed to write"
    assert err.__cause__ is cause


@pytest.mark.asyncio
async def test_wrap_exception_async():
    @wrap_exception(BackendError, "read failed")
    async def read():
        raise KeyError("k")

    with pytest.raises(BackendError) as info:
        await read()
    assert isinstance(info.value.__cause__, KeyError)
    assert info.value.context["operation"].endswith("read")


def test_wrap_exception_sync_passes_own_errors_through():
    @wrap_exception(BackendError, "wrapped")
    def strict():
        raise NotFoundError("missing")

    @wrap_exception(BackendError, "wrapped")
    def loose():
        raise ValueError("bad")

    with pytest.raises(NotFoundError):
        strict()
    with pytest.raises(BackendError, match="wrapped"):
        loose()


def test_log_exception(caplog):
    logger = logging.getLogger("cacheflow.test")
    with caplog.at_level(logging.WARNING, logger="cacheflow.test"):
        log_exception(NotFoundError("gone", context={"key": "k"}), level=logging.WARNING, logger=logger)
    record = caplog.records[-1]
    assert record.levelno == logging.WARNING
    assert json.loads(record.getMessage())["context"] == {"key": "k"}
