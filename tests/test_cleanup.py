from __future__ import annotations

from gribslicer.cleanup import Cleanup
from gribslicer.paths import combined_path, final_path, index_path, link_file, run_dir, series_path


def _populate(run, member: int) -> None:
    root = run_dir(run)
    for path in (
        root / "slices" / f"EN{member:02d}" / "tp_0h.grib2",
        root / "slices" / f"EN{member:02d}" / "tp_6h.grib2",
        series_path(run, "tp", member),
        combined_path(run, member),
        index_path(run, 0),
        link_file(run),
    ):
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(b"data")


def _finalize(run, member: int) -> None:
    final_path(run, member).write_bytes(b"final")


def test_member_intermediates_need_final_artifact(make_run) -> None:
    run = make_run()
    _populate(run, 1)
    cleanup = Cleanup(run)

    assert cleanup.cleanup_member(1) == 0
    assert series_path(run, "tp", 1).exists()

    _finalize(run, 1)
    assert cleanup.cleanup_member(1) == 4
    assert not (run_dir(run) / "slices" / "EN01").exists()
    assert not series_path(run, "tp", 1).exists()
    assert not combined_path(run, 1).exists()
    assert final_path(run, 1).read_bytes() == b"final"


def test_indexes_kept_until_every_member_is_final(make_run) -> None:
    run = make_run()
    _populate(run, 1)
    _populate(run, 2)
    _finalize(run, 1)
    cleanup = Cleanup(run)

    assert cleanup.cleanup_run([1, 2]) == 0
    assert index_path(run, 0).exists()

    _finalize(run, 2)
    cleanup.cleanup_member(1)
    cleanup.cleanup_member(2)
    assert cleanup.cleanup_run([1, 2]) == 2
    assert not index_path(run, 0).exists()
    assert not link_file(run).exists()
    assert not (run_dir(run) / "slices").exists()
    assert sorted(p.name for p in run_dir(run).iterdir()) == [
        "20251012_00z_tp_EN01.nc",
        "20251012_00z_tp_EN02.nc",
    ]


def test_keep_intermediates(make_run) -> None:
    run = make_run(keep_intermediates=True)
    _populate(run, 0)
    _finalize(run, 0)
    cleanup = Cleanup(run)

    assert cleanup.cleanup_member(0) == 0
    assert cleanup.cleanup_run([0]) == 0
    assert combined_path(run, 0).exists()
    assert index_path(run, 0).exists()
