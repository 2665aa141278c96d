"""
Tests for multiagent_orchestrator.error_codes -- verify error code format and uniqueness.
"""

import multiagent_orchestrator.error_codes as ec


class TestErrorCodeFormat:
    """Verify that all error codes follow the MAO_XXXX format."""

    def _get_all_error_codes(self) -> list[tuple[str, str]]:
        """Return all (name, value) pairs that are error code constants."""
        return [
            (name, getattr(ec, name))
            for name in dir(ec)
            if name.startswith("MAO_") and isinstance(getattr(ec, name), str)
        ]

    def test_all_codes_follow_format(self) -> None:
        codes = self._get_all_error_codes()
        assert len(codes) > 0, "No error codes found"
        for name, value in codes:
            assert value.startswith("MAO_"), f"{name} value {value!r} does not start with MAO_"
            suffix = value.removeprefix("MAO_")
            assert suffix.isdigit(), f"{name} value {value!r} suffix is not numeric: {suffix!r}"

    def test_constant_name_matches_value(self) -> None:
        for name, value in self._get_all_error_codes():
            assert name.startswith(value + "_"), f"{name} does not embed its value {value!r}"

    def test_all_codes_unique(self) -> None:
        codes = self._get_all_error_codes()
        values = [v for _, v in codes]
        assert len(values) == len(set(values)), "Duplicate error code values found"

    def test_registration_errors_in_1xxx(self) -> None:
        assert ec.MAO_1001_AGENT_NOT_FOUND == "MAO_1001"
        assert ec.MAO_1003_CAPACITY_EXCEEDED == "MAO_1003"
        assert ec.MAO_1005_REGISTRY_SHUT_DOWN == "MAO_1005"

    def test_routing_errors_in_2xxx(self) -> None:
        assert ec.MAO_2001_UNROUTABLE == "MAO_2001"
        assert ec.MAO_2003_MAX_DEPTH_EXCEEDED == "MAO_2003"

    def test_workflow_errors_in_3xxx(self) -> None:
        assert ec.MAO_3001_WORKFLOW_NOT_FOUND == "MAO_3001"
        assert ec.MAO_3003_WORKFLOW_CANCELLED == "MAO_3003"

    def test_execution_errors_in_4xxx(self) -> None:
        assert ec.MAO_4001_TIMEOUT == "MAO_4001"
        assert ec.MAO_4005_INTERNAL_ERROR == "MAO_4005"

    def test_admission_errors_in_5xxx(self) -> None:
        assert ec.MAO_5001_CONFIGURATION_INVALID == "MAO_5001"
        assert ec.MAO_5002_RATE_LIMITED == "MAO_5002"
