from __future__ import annotations

import pytest

from gribslicer.data.index import grib_url, index_url
from gribslicer.exceptions import SelectionEmpty
from gribslicer.paths import final_path, index_dir, link_file, run_dir
from gribslicer.pipeline import ForecastPipeline

from conftest import FakeTransform, publish_run

ALL_STEPS = [f"tp_{lt}h.grib2" for lt in range(0, 361, 6)]


def _range_calls(http):
    return [url for url, headers in http.calls if "Range" in headers]


def test_full_ensemble_run(make_run, fake_http, fake_transform) -> None:
    run = make_run()
    publish_run(fake_http, run)

    report = ForecastPipeline(run, http=fake_http, transform=fake_transform).run()

    assert report.success
    assert report.unavailable_lead_times == []
    assert report.fetch_counts == {"success": 183, "skipped": 0, "failed": 0}
    assert [p.name for p in report.final_artifacts] == [
        "20251012_00z_tp_EN00.nc",
        "20251012_00z_tp_EN01.nc",
        "20251012_00z_tp_EN02.nc",
    ]
    for member in ("EN00", "EN01", "EN02"):
        assert fake_transform.merges[(member, "tp")] == ALL_STEPS

    final = final_path(run, 1).read_bytes()
    assert final.startswith(b"CROP(65.0, 110.0, 5.0, 40.0)<tp:1:0;")
    assert final.endswith(b">")
    assert sorted(p.name for p in run_dir(run).iterdir()) == [
        p.name for p in report.final_artifacts
    ]


def test_missing_index_reduces_coverage(make_run, fake_http, fake_transform, connection_error) -> None:
    run = make_run()
    publish_run(fake_http, run)
    fake_http.errors[index_url(run, 42)] = connection_error

    report = ForecastPipeline(run, http=fake_http, transform=fake_transform).run()

    assert report.success
    assert report.unavailable_lead_times == [42]
    assert report.fetch_counts["success"] == 180
    assert grib_url(run, 42) not in _range_calls(fake_http)
    steps = fake_transform.merges[("EN01", "tp")]
    assert len(steps) == 60
    assert "tp_42h.grib2" not in steps


def test_failed_slice_reduces_coverage(make_run, fake_http, fake_transform) -> None:
    run = make_run()
    publish_run(fake_http, run)
    fake_http.truncate[grib_url(run, 120)] = 3

    report = ForecastPipeline(run, http=fake_http, transform=fake_transform).run()

    assert report.success
    assert report.fetch_counts["failed"] == 3
    assert len(fake_transform.merges[("EN02", "tp")]) == 60
    assert not list(run_dir(run).rglob("*.part"))


def test_unmatched_variable_is_isolated(make_run, fake_http, fake_transform) -> None:
    run = make_run(variables=("tp", "sd"))
    publish_run(fake_http, run, variables=("tp",))

    report = ForecastPipeline(run, http=fake_http, transform=fake_transform).run()

    assert report.success
    assert report.empty_variables == ["sd"]
    units = {(u.variable, u.member): u for u in report.units}
    assert units[("sd", None)].reason == "no matching index entries"
    assert not units[("sd", None)].produced
    assert all(units[("tp", m)].produced for m in (0, 1, 2))
    assert report.summary()["units_produced"] == 3


def test_unmatched_variable_in_strict_mode(make_run, fake_http, fake_transform) -> None:
    run = make_run(variables=("tp", "sd"), fail_on_empty_selection=True)
    publish_run(fake_http, run, variables=("tp",))

    with pytest.raises(SelectionEmpty):
        ForecastPipeline(run, http=fake_http, transform=fake_transform).run()
    assert _range_calls(fake_http) == []


def test_run_without_any_index_fails(make_run, fake_http, fake_transform) -> None:
    run = make_run(lead_time_end=12)

    report = ForecastPipeline(run, http=fake_http, transform=fake_transform).run()

    assert not report.success
    assert report.unavailable_lead_times == [0, 6, 12]
    assert report.final_artifacts == []
    assert link_file(run).read_text() == ""
    assert report.summary()["success"] is False


def test_rerun_is_idempotent(make_run, fake_http, fake_transform) -> None:
    run = make_run(lead_time_end=48)
    publish_run(fake_http, run)
    first = ForecastPipeline(run, http=fake_http, transform=fake_transform).run()
    contents = {p: p.read_bytes() for p in first.final_artifacts}

    fake_http.calls.clear()
    second_transform = FakeTransform()
    second = ForecastPipeline(run, http=fake_http, transform=second_transform).run()

    assert second.success
    assert second.final_artifacts == first.final_artifacts
    assert {p: p.read_bytes() for p in second.final_artifacts} == contents
    assert _range_calls(fake_http) == []
    assert second_transform.merges == {}
    assert second.fetch_counts == {"success": 0, "skipped": 0, "failed": 0}


def test_interrupted_run_resumes_from_slices(make_run, fake_http, fake_transform) -> None:
    run = make_run(lead_time_end=24)
    publish_run(fake_http, run)
    fake_transform.fail_crop = True

    first = ForecastPipeline(run, http=fake_http, transform=fake_transform).run()
    assert not first.success
    assert index_dir(run).exists()

    fake_http.calls.clear()
    fake_transform.fail_crop = False
    second = ForecastPipeline(run, http=fake_http, transform=fake_transform).run()

    assert second.success
    assert second.fetch_counts == {"success": 0, "skipped": 15, "failed": 0}
    assert fake_http.urls_called(".index") == []
    assert not index_dir(run).exists()


def test_single_member_scope(make_run, fake_http, fake_transform) -> None:
    run = make_run(member=2, lead_time_end=24)
    publish_run(fake_http, run)

    report = ForecastPipeline(run, http=fake_http, transform=fake_transform).run()

    assert [p.name for p in report.final_artifacts] == ["20251012_00z_tp_EN02.nc"]
    assert [(u.variable, u.member) for u in report.units] == [("tp", 2)]
    assert len(_range_calls(fake_http)) == 5


def test_deterministic_product(make_run, fake_http, fake_transform) -> None:
    run = make_run(product="hres", lead_time_end=24)
    publish_run(fake_http, run, members=(None,))

    report = ForecastPipeline(run, http=fake_http, transform=fake_transform).run()

    assert [p.name for p in report.final_artifacts] == ["20251012_00z_tp.nc"]
    assert all(url.endswith("-oper-fc.grib2") for url in _range_calls(fake_http))


def test_keep_intermediates(make_run, fake_http, fake_transform) -> None:
    run = make_run(lead_time_end=12, keep_intermediates=True)
    publish_run(fake_http, run)

    report = ForecastPipeline(run, http=fake_http, transform=fake_transform).run()

    assert report.success
    root = run_dir(run)
    assert len(list((root / "slices" / "EN01").iterdir())) == 3
    assert (root / "combined" / "EN01.nc").exists()
    assert link_file(run).read_text().count("\n") == 3


def test_resume_includes_lead_time_recovered_after_first_attempt(
    make_run, fake_http, fake_transform, connection_error
) -> None:
    run = make_run(lead_time_end=24)
    publish_run(fake_http, run)
    fake_http.errors[index_url(run, 12)] = connection_error
    fake_transform.fail_crop = True

    first = ForecastPipeline(run, http=fake_http, transform=fake_transform).run()
    assert not first.success
    assert first.unavailable_lead_times == [12]

    del fake_http.errors[index_url(run, 12)]
    fake_transform.fail_crop = False
    second = ForecastPipeline(run, http=fake_http, transform=fake_transform).run()

    assert second.success
    assert second.unavailable_lead_times == []
    assert fake_transform.merges[("EN01", "tp")] == [
        "tp_0h.grib2", "tp_6h.grib2", "tp_12h.grib2", "tp_18h.grib2", "tp_24h.grib2",
    ]
    assert b"tp:1:12;" in final_path(run, 1).read_bytes()
    assert b"tp:cf:12;" in final_path(run, 0).read_bytes()


def test_run_method_is_not_shadowed_by_configuration(make_run, fake_http, fake_transform) -> None:
    run = make_run(member=1, lead_time_end=6)
    publish_run(fake_http, run)
    pipeline = ForecastPipeline(run, http=fake_http, transform=fake_transform)

    assert pipeline.run_config is run
    assert callable(pipeline.run)
    assert pipeline.run().success
    assert pipeline.run().success
