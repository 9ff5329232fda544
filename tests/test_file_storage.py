"""Tests for the screenshot file store."""

import os
import time
from datetime import datetime
from pathlib import Path

from tests.helpers import b64, make_png
from visreg.diff.imaging import to_data_url
from visreg.models.project import Baseline, BaselineMetadata
from visreg.storage.files import SUBDIRS, ScreenshotStore, safe_name


def _age(path: Path, days: float) -> None:
    stamp = time.time() - days * 86400
    os.utime(path, (stamp, stamp))


class TestScreenshotStore:
    """Tests for ScreenshotStore."""

    def test_creates_subdirectories(self, tmp_path):
        ScreenshotStore(tmp_path / "shots")
        assert all((tmp_path / "shots" / sub).is_dir() for sub in SUBDIRS)

    def test_disabled_store_writes_nothing(self, tmp_path):
        store = ScreenshotStore(tmp_path / "shots", enabled=False)
        assert store.save_screenshots("p", "t", current=make_png()) == {}
        assert store.cleanup_old_files() == 0
        assert not (tmp_path / "shots").exists()

    def test_save_screenshots_naming(self, tmp_path):
        """Test files land in per-role folders with project, test and timestamp in the name."""
        store = ScreenshotStore(tmp_path)
        png = make_png()
        when = datetime(2024, 3, 9, 14, 5, 7)

        paths = store.save_screenshots(
            "proj", "test", current=png, diff=to_data_url(png), baseline=b64(png), when=when
        )

        assert paths == {
            "baseline": str(tmp_path / "baselines" / "proj_test_2024-03-09_14-05-07_baseline.png"),
            "current": str(tmp_path / "current" / "proj_test_2024-03-09_14-05-07_current.png"),
            "diff": str(tmp_path / "diffs" / "proj_test_2024-03-09_14-05-07_diff.png"),
        }
        assert all(Path(p).read_bytes() == png for p in paths.values())

    def test_only_given_roles_saved(self, tmp_path):
        paths = ScreenshotStore(tmp_path).save_screenshots("p", "t", current=make_png())
        assert list(paths) == ["current"]

    def test_write_failure_is_not_raised(self, tmp_path):
        paths = ScreenshotStore(tmp_path).save_screenshots("p", "t", current=make_png(), diff="@@@")
        assert list(paths) == ["current"]

    def test_save_baseline(self, tmp_path):
        baseline = Baseline(project_id="p", name="home", image=b64(make_png()),
                            metadata=BaselineMetadata(url="https://example.com"), version=2)
        path = ScreenshotStore(tmp_path).save_baseline(baseline)
        assert Path(path).name == f"p_home_v2_{baseline.id}.png"

    def test_cleanup_removes_only_old_current_and_diffs(self, tmp_path):
        store = ScreenshotStore(tmp_path)
        old = store.save_screenshots("p", "old", current=make_png(), diff=make_png(), baseline=make_png())
        fresh = store.save_screenshots("p", "new", current=make_png(), diff=make_png())
        for path in old.values():
            _age(Path(path), 10)

        removed = store.cleanup_old_files(days=7)

        assert removed == 2
        assert not Path(old["current"]).exists()
        assert not Path(old["diff"]).exists()
        assert Path(old["baseline"]).exists()
        assert all(Path(p).exists() for p in fresh.values())

    def test_save_baseline_stays_inside_baselines_dir(self, tmp_path):
        """Test a baseline name with path separators cannot escape the store."""
        baseline = Baseline(project_id="p", name="../../../escaped", image=b64(make_png()),
                            metadata=BaselineMetadata(url="https://example.com"))
        path = Path(ScreenshotStore(tmp_path / "shots").save_baseline(baseline))

        assert path.parent == tmp_path / "shots" / "baselines"
        assert path.resolve().parent == (tmp_path / "shots" / "baselines").resolve()
        assert ".." not in path.name
        assert path.exists()
        assert not list(tmp_path.glob("shots/escaped*"))


class TestSafeName:
    """Tests for safe_name."""

    def test_keeps_plain_ids(self):
        assert safe_name("3f2a-9b_home.v2") == "3f2a-9b_home.v2"

    def test_replaces_separators_and_dots(self):
        assert "/" not in safe_name("a/b\\c")
        assert ".." not in safe_name("../x")
        assert safe_name("..") == "_"
