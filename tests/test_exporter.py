import json
import os
import time

from mlautos.core.exceptions import StorageError
from mlautos.utils.exporter import cleanup_old_exports, export_collections, save_batch_summary


def test_export_collections(memory_store, tmp_path):
    memory_store.put("toyota-corolla", {"brand": "toyota", "count": 2, "cars": [{}, {}]})
    memory_store.put("ford-focus", {"brand": "ford", "count": 1, "cars": [{}]})

    path = export_collections(memory_store, exports_dir=tmp_path)

    assert path.parent == tmp_path
    assert path.name.startswith("mlautos_export_")
    data = json.loads(path.read_text(encoding="utf-8"))
    assert data["totalCollections"] == 2
    assert data["totalCars"] == 3
    assert set(data["collections"]) == {"toyota-corolla", "ford-focus"}
    assert data["errors"] == {}


def test_export_reports_unreadable_collections(memory_store, tmp_path):
    class FlakyStore(type(memory_store)):
        def get(self, key):
            if key == "broken":
                raise StorageError("invalid JSON")
            return super().get(key)

    store = FlakyStore()
    store.put("broken", {})
    store.put("fiat-cronos", {"count": 4})

    data = json.loads(export_collections(store, exports_dir=tmp_path).read_text(encoding="utf-8"))

    assert data["errors"] == {"broken": "invalid JSON"}
    assert data["totalCars"] == 4


def test_save_batch_summary(tmp_path):
    path = save_batch_summary({"totalQueries": 1, "results": []}, exports_dir=tmp_path)

    assert path.name.startswith("mlautos_batch_")
    assert json.loads(path.read_text(encoding="utf-8"))["totalQueries"] == 1


def test_cleanup_old_exports(tmp_path):
    old_export = tmp_path / "mlautos_export_2020-01-01_00-00-00.json"
    old_batch = tmp_path / "mlautos_batch_2020-01-01_00-00-00.json"
    recent = tmp_path / "mlautos_export_recent.json"
    unrelated = tmp_path / "notes.json"
    for path in (old_export, old_batch, recent, unrelated):
        path.write_text("{}", encoding="utf-8")
    forty_days_ago = time.time() - 40 * 24 * 3600
    for path in (old_export, old_batch, unrelated):
        os.utime(path, (forty_days_ago, forty_days_ago))

    removed = cleanup_old_exports(days_to_keep=30, exports_dir=tmp_path)

    assert removed == 2
    assert not old_export.exists()
    assert not old_batch.exists()
    assert recent.exists()
    assert unrelated.exists()
