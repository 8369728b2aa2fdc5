import pytest

from papertrail.services.result import Result


class TestResultSuccess:
    def test_success_creates_ok_result(self):
        result = Result.success("select_type")
        assert result.ok is True
        assert result.value == "select_type"
        assert result.error is None

    def test_unwrap_returns_value(self):
        assert Result.success({"report_type": "revenue"}).unwrap() == {"report_type": "revenue"}


class TestResultFailure:
    def test_failure_creates_not_ok_result(self):
        result = Result.failure("Amount must be greater than zero.", "validation_error")
        assert result.ok is False
        assert result.error == "Amount must be greater than zero."
        assert result.error_code == "validation_error"
        assert result.value is None

    def test_failure_default_code(self):
        assert Result.failure("Error message").error_code == "unknown"

    def test_unwrap_raises(self):
        with pytest.raises(ValueError):
            Result.failure("nope", "invalid_action").unwrap()


class TestResultUnwrapOr:
    def test_unwrap_or_returns_value_on_success(self):
        assert Result.success("actual value").unwrap_or("default") == "actual value"

    def test_unwrap_or_returns_default_on_failure(self):
        assert Result.failure("Error", "code").unwrap_or("default") == "default"

    def test_unwrap_or_with_none_value(self):
        assert Result.success(None).unwrap_or("default") is None
