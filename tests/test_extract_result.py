"""Tests for typed result extraction."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import pytest
from pydantic import BaseModel

from gpjobs.domain.exceptions import (
    JobCancelledError,
    JobFailedError,
    MissingResultError,
    ProtocolError,
    TransportError,
    TypeMismatchError,
)
from gpjobs.domain.models import (
    ExecuteResult,
    JobMessage,
    JobStatus,
    ResultParameter,
    ResultReference,
)
from gpjobs.services.value_converter import convert_value
from gpjobs.use_cases.extract_result import ResultExtractor
from tests.conftest import STATUS_PATH, ScriptedTransport, make_handle

RESULT_PATH = f"{STATUS_PATH}/results/Output"


class ElevationSummary(BaseModel):
    min_elevation: float
    max_elevation: float
    units: str = "Meters"


@dataclass
class Extent:
    xmin: float
    ymin: float
    xmax: float
    ymax: float


def _succeeded(**results: ResultReference) -> Any:
    return make_handle(JobStatus.SUCCEEDED, results=results)


def _reference(name: str = "Output", **kwargs: Any) -> ResultReference:
    return ResultReference(name=name, param_url=f"results/{name}", **kwargs)


@pytest.fixture
def extractor(transport: ScriptedTransport) -> ResultExtractor:
    return ResultExtractor(transport)


def test_fetches_unmaterialized_value_once(
    transport: ScriptedTransport, extractor: ResultExtractor
) -> None:
    transport.script(
        "GET",
        RESULT_PATH,
        {"paramName": "Output", "dataType": "GPDouble", "value": 42.0},
    )

    value = extractor.extract(_succeeded(Output=_reference()), "Output", float)

    assert value == 42.0
    assert isinstance(value, float)
    assert transport.calls == [("GET", RESULT_PATH, {})]


def test_inline_values_need_no_request(
    transport: ScriptedTransport, extractor: ResultExtractor
) -> None:
    handle = _succeeded(Output=_reference(value=[1, 2], materialized=True))

    assert extractor.extract(handle, "Output", list) == [1, 2]
    assert transport.calls == []


def test_param_url_defaults_to_results_path(
    transport: ScriptedTransport, extractor: ResultExtractor
) -> None:
    transport.script("GET", RESULT_PATH, {"paramName": "Output", "value": "done"})
    handle = _succeeded(Output=ResultReference(name="Output"))

    assert extractor.extract(handle, "Output", str) == "done"


def test_materialize_returns_generic_value(
    transport: ScriptedTransport, extractor: ResultExtractor
) -> None:
    transport.script(
        "GET",
        RESULT_PATH,
        {"paramName": "Output", "value": {"features": []}},
    )
    handle = _succeeded(Output=_reference(data_type="GPFeatureRecordSetLayer"))

    parameter = extractor.materialize(handle, "Output")

    assert parameter == ResultParameter(
        name="Output", value={"features": []}, data_type="GPFeatureRecordSetLayer"
    )


def test_missing_parameter_name(
    transport: ScriptedTransport, extractor: ResultExtractor
) -> None:
    handle = _succeeded(Output=_reference())

    with pytest.raises(MissingResultError) as exc_info:
        extractor.extract(handle, "Other", float)

    assert exc_info.value.parameter_name == "Other"
    assert "Output" in str(exc_info.value)
    assert transport.calls == []


def test_failed_job_raises_job_failed_with_messages(
    transport: ScriptedTransport, extractor: ResultExtractor
) -> None:
    handle = make_handle(
        JobStatus.FAILED,
        messages=(JobMessage(type="error", description="Input has no features"),),
    )

    with pytest.raises(JobFailedError) as exc_info:
        extractor.extract(handle, "Output", float)

    assert exc_info.value.messages == ["Input has no features"]
    assert transport.calls == []


def test_cancelled_job_raises_job_cancelled(extractor: ResultExtractor) -> None:
    with pytest.raises(JobCancelledError):
        extractor.extract(make_handle(JobStatus.CANCELLED), "Output", float)


@pytest.mark.parametrize(
    "status", [JobStatus.SUBMITTED, JobStatus.EXECUTING, JobStatus.CANCELLING]
)
def test_running_job_has_no_results(
    transport: ScriptedTransport, extractor: ResultExtractor, status: JobStatus
) -> None:
    handle = make_handle(status, results={"Output": _reference()})

    with pytest.raises(MissingResultError):
        extractor.extract(handle, "Output", float)

    assert transport.calls == []


def test_fetch_errors_propagate(
    transport: ScriptedTransport, extractor: ResultExtractor
) -> None:
    transport.script("GET", RESULT_PATH, TransportError("timeout"))

    with pytest.raises(TransportError):
        extractor.extract(_succeeded(Output=_reference()), "Output", float)


def test_result_body_without_value_is_a_protocol_error(
    transport: ScriptedTransport, extractor: ResultExtractor
) -> None:
    transport.script("GET", RESULT_PATH, {"paramName": "Output"})

    with pytest.raises(ProtocolError):
        extractor.extract(_succeeded(Output=_reference()), "Output", float)


@pytest.mark.parametrize(
    ("value", "target", "expected"),
    [
        (42.0, float, 42.0),
        (3, float, 3.0),
        (42.0, int, 42),
        (7, int, 7),
        (True, bool, True),
        ("Meters", str, "Meters"),
        ([1, "a"], list, [1, "a"]),
        ({"k": 1}, dict, {"k": 1}),
        ([1, 2.5], list[float], [1.0, 2.5]),
        (None, float | None, None),
    ],
)
def test_conversion_accepts_matching_values(
    value: Any, target: Any, expected: Any
) -> None:
    assert convert_value(value, target) == expected


@pytest.mark.parametrize(
    ("value", "target"),
    [
        ("42", float),
        (True, float),
        (42.5, int),
        (True, int),
        (1, bool),
        ("true", bool),
        (42, str),
        ({"k": 1}, list),
        ([1], dict),
        (None, float),
        (["x"], list[float]),
        (["1.5"], list[float]),
        ("1.5", float | None),
        ({"a": "120.5"}, dict[str, float]),
        ([1, "true"], list[bool]),
        ({"xmin": "0", "ymin": 1, "xmax": 2, "ymax": 3}, Extent),
    ],
)
def test_conversion_rejects_mismatched_values(value: Any, target: Any) -> None:
    with pytest.raises(TypeMismatchError):
        convert_value(value, target, name="Output")


def test_value_converts_to_pydantic_model(
    transport: ScriptedTransport, extractor: ResultExtractor
) -> None:
    transport.script(
        "GET",
        RESULT_PATH,
        {"paramName": "Output", "value": {"min_elevation": 12, "max_elevation": 80.5}},
    )

    summary = extractor.extract(
        _succeeded(Output=_reference()), "Output", ElevationSummary
    )

    assert summary == ElevationSummary(min_elevation=12.0, max_elevation=80.5)


def test_value_converts_to_dataclass() -> None:
    extent = convert_value(
        {"xmin": 0, "ymin": 1, "xmax": 2.5, "ymax": 3}, Extent, name="Extent"
    )

    assert extent == Extent(xmin=0.0, ymin=1.0, xmax=2.5, ymax=3.0)


def test_model_mismatch_names_the_parameter(
    transport: ScriptedTransport, extractor: ResultExtractor
) -> None:
    transport.script(
        "GET", RESULT_PATH, {"paramName": "Output", "value": {"min_elevation": 1}}
    )

    with pytest.raises(TypeMismatchError) as exc_info:
        extractor.extract(_succeeded(Output=_reference()), "Output", ElevationSummary)

    assert exc_info.value.parameter_name == "Output"
    assert exc_info.value.target is ElevationSummary


def test_extract_from_execute_result() -> None:
    result = ExecuteResult(
        results={"Area": ResultParameter(name="Area", value=12, data_type="GPDouble")}
    )

    assert ResultExtractor.extract_from_execute(result, "Area", float) == 12.0
    with pytest.raises(MissingResultError):
        ResultExtractor.extract_from_execute(result, "Perimeter", float)


def test_numeric_string_is_not_a_number_inside_optional_or_model(
    extractor: ResultExtractor,
) -> None:
    handle = _succeeded(
        MinElevation=_reference("MinElevation", value="120.5", materialized=True),
        Summary=_reference(
            "Summary",
            value={"min_elevation": "1", "max_elevation": 2.0},
            materialized=True,
        ),
    )

    with pytest.raises(TypeMismatchError):
        extractor.extract(handle, "MinElevation", float)
    with pytest.raises(TypeMismatchError):
        extractor.extract(handle, "MinElevation", float | None)
    with pytest.raises(TypeMismatchError):
        extractor.extract(handle, "Summary", ElevationSummary)
    assert extractor.extract(handle, "MinElevation", str | None) == "120.5"
