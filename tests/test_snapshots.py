import pytest

from opskit.directives import ResourceKind
from opskit.snapshots import SnapshotStore


def test_save_and_load(tmp_path):
    store = SnapshotStore(tmp_path)
    content = "Port 22\r\nPasswordAuthentication yes  \n\n"
    snapshot = store.save("sshd", ResourceKind.FILE_BLOCK, content)

    loaded = store.load(snapshot.id)
    assert loaded == snapshot
    assert loaded.raw_content == content
    assert snapshot.id.endswith("-sshd")


def test_absent_resource_snapshot(tmp_path):
    store = SnapshotStore(tmp_path)
    snapshot = store.save("fail2ban", ResourceKind.INI, None)
    assert store.load(snapshot.id).raw_content is None


def test_ids_are_unique_and_listed_in_order(tmp_path):
    store = SnapshotStore(tmp_path)
    ids = [store.save("sshd", ResourceKind.FILE_BLOCK, f"v{n}\n").id for n in range(5)]
    store.save("crontab", ResourceKind.CRON, "@daily /opt/job.sh\n")

    assert len(set(ids)) == 5
    assert [s.id for s in store.list("sshd")] == ids
    assert len(store.list()) == 6


def test_load_missing(tmp_path):
    with pytest.raises(FileNotFoundError):
        SnapshotStore(tmp_path).load("nope")
