from datetime import timedelta
import pytest

from pglockwatch.core.graph import assemble_snapshot
from pglockwatch.core.models import (
    ClassObjectTarget,
    LockRecord,
    RelationTarget,
    RelationTupleTarget,
    SpeculativeTokenTarget,
    TransactionIdTarget,
    UnknownTarget,
    VirtualXidTarget,
)
from pglockwatch.core.render import describe_lock_target, describe_process, format_duration

def lock(pid, target, granted=True, lock_type="relation", mode="AccessShareLock", **kwargs):
    return LockRecord(pid=pid, lock_type=lock_type, mode=mode, granted=granted, target=target, **kwargs)

@pytest.mark.parametrize("delta, expected", [
    (timedelta(seconds=1.5), "1.500s"),
    (timedelta(seconds=-2), "0.000s"),
    (timedelta(minutes=2, seconds=3), "2m3s"),
    (timedelta(hours=1, minutes=2, seconds=3), "1h2m3s"),
    (None, "an unknown time"),
])
def test_format_duration(delta, expected):
    assert format_duration(delta) == expected

def test_describe_relation_kinds(make_process):
    process = make_process(1)
    table = lock(1, RelationTarget(16384, "accounts", "r"))
    index = lock(1, RelationTarget(16390, "accounts_pkey", "i"))
    unresolved = lock(1, RelationTarget(99999, None, ""))
    odd_kind = lock(1, RelationTarget(16400, "thing", "x"))

    assert describe_lock_target(table, process) == "table accounts"
    assert describe_lock_target(index, process) == "index accounts_pkey"
    assert describe_lock_target(unresolved, process) == "unknown OID 99999"
    assert describe_lock_target(odd_kind, process) == "[x] thing (16400)"

def test_describe_tuple_target(make_process):
    target = RelationTupleTarget(16384, "accounts", "r", page=0, tuple_index=3)

    assert describe_lock_target(lock(1, target, lock_type="tuple"), make_process(1)) == "table accounts, page 0, tuple 3"

def test_granted_lock_on_own_xid_is_skipped(make_process):
    process = make_process(1, backend_xid=700)

    own = lock(1, TransactionIdTarget(700), lock_type="transactionid", mode="ExclusiveLock")
    other = lock(1, TransactionIdTarget(650), granted=False, lock_type="transactionid", mode="ShareLock")

    assert describe_lock_target(own, process) is None
    assert describe_lock_target(other, process) == "transaction XID 650"

def test_describe_speculative_token(make_process):
    token = lock(1, SpeculativeTokenTarget(transaction_id=650, obj_id=3), granted=False, lock_type="spectoken", mode="ShareLock")

    assert describe_lock_target(token, make_process(1)) == "transaction XID 650, speculative insertion token 3"

def test_granted_lock_on_own_virtual_xid_is_skipped(make_process):
    process = make_process(1)
    own = lock(1, VirtualXidTarget("3/17"), lock_type="virtualxid", virtual_transaction="3/17")
    other = lock(1, VirtualXidTarget("4/2"), granted=False, lock_type="virtualxid", virtual_transaction="3/17")

    assert describe_lock_target(own, process) is None
    assert describe_lock_target(other, process) == "virtual XID 4/2"

def test_describe_object_and_unknown_targets(make_process):
    process = make_process(1)

    advisory = lock(1, ClassObjectTarget(class_id=0, obj_id=42, obj_sub_id=1), lock_type="advisory")
    assert describe_lock_target(advisory, process) == "class id 0, object id 42, object sub-id 1"
    assert describe_lock_target(lock(1, UnknownTarget(), lock_type="extend"), process) == "unknown target"

def test_describe_process_with_blocker(make_process, db_now):
    waiter_lock = lock(
        2, RelationTarget(16384, "accounts", "r"), granted=False, mode="AccessExclusiveLock",
        wait_start=db_now - timedelta(seconds=4),
    )
    holder_lock = lock(1, RelationTarget(16384, "accounts", "r"), mode="RowExclusiveLock")
    snapshot = assemble_snapshot(
        [
            make_process(1, wait_event_type="Client", state="idle in transaction", query="UPDATE accounts SET x = 1"),
            make_process(2, blocked_by=[1], query="ALTER TABLE accounts\n  ADD COLUMN y int"),
        ],
        [waiter_lock, holder_lock],
    )

    text = describe_process(snapshot.processes[2])

    assert text.startswith('Process 2 (client backend "psql") is active for 10.000s (Lock:relation)\n')
    assert "  running for 10.000s: ALTER TABLE accounts   ADD COLUMN y int\n" in text
    assert "  waiting for relation/AccessExclusiveLock lock on table accounts (since 4.000s)\n" in text
    assert "  blocked by 1 processes:\n" in text
    assert "  - Process 1 (client backend \"psql\") is idle in transaction" in text
    assert "      last query started 10.000s ago: UPDATE accounts SET x = 1\n" in text
    assert "      holding relation/RowExclusiveLock lock on table accounts\n" in text
    assert "      (blocked by no processes)\n" in text

def test_describe_process_without_query_or_locks(make_process):
    text = describe_process(make_process(3, query=""))

    assert "  (no query)\n" in text
    assert "  (holding no locks)\n" in text
    assert "  (blocked by no processes)\n" in text

def test_query_preview_is_truncated(make_process):
    text = describe_process(make_process(3, query="SELECT " + "x" * 100))

    assert ": SELECT " + "x" * 33 + "\n" in text

def test_describe_terminates_on_cycle(make_process):
    snapshot = assemble_snapshot([make_process(100, blocked_by=[200]), make_process(200, blocked_by=[100])], [])

    text = describe_process(snapshot.processes[100])

    assert text.count("Process 100 ") == 1
    assert text.count("Process 200 ") == 1
    assert "process 100 (already described above; blocking cycle)" in text

def test_describe_missing_blocker(make_process):
    snapshot = assemble_snapshot([make_process(6, blocked_by=[0])], [])

    assert "- process 0 (not present in this snapshot)" in describe_process(snapshot.processes[6])
