import threading
import time

import pytest

from pbkv import pbserver, viewserver
from pbkv.pbclerk import Clerk, nrand
from pbkv.viewclerk import ViewClerk
from pbkv.views import DEAD_PINGS, PING_INTERVAL

DEADTIME = PING_INTERVAL * DEAD_PINGS


def wait_for(cond, timeout=DEADTIME * 6):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if cond():
            return True
        time.sleep(PING_INTERVAL)
    return cond()


def check(ck, key, value):
    assert ck.get(key) == value


def check_appends(value, counts):
    for i, count in enumerate(counts):
        lastoff = -1
        for j in range(count):
            wanted = f"x {i} {j} y"
            off = value.find(wanted)
            assert off >= 0, "missing element in Append result"
            assert value.rfind(wanted) == off, "duplicate element in Append result"
            assert off > lastoff, "wrong order for element in Append result"
            lastoff = off


@pytest.fixture
def cluster():
    servers = []
    vs = viewserver.start_server("127.0.0.1:0")

    def add():
        pb = pbserver.start_server(vs.me, "127.0.0.1:0")
        servers.append(pb)
        return pb

    yield vs, add
    for pb in servers:
        pb.kill()
    vs.kill()


def test_nrand_range():
    values = {nrand() for _ in range(200)}
    assert all(0 <= v < (1 << 62) for v in values)
    assert len(values) > 190


def test_clerk_without_view_service_has_empty_view():
    ck = Clerk("127.0.0.1:1", "")
    assert ck.view.primary == ""
    assert ck.view.viewnum == 0


def test_basic_fail(cluster):
    vs, add = cluster
    vck = ViewClerk("", vs.me)
    ck = Clerk(vs.me, "")

    # Test 1: single primary, no backup
    s1 = add()
    assert wait_for(lambda: vck.primary() == s1.me), "first primary never formed view"

    ck.put("111", "v1")
    check(ck, "111", "v1")
    ck.put("2", "v2")
    check(ck, "2", "v2")
    ck.put("1", "v1a")
    check(ck, "1", "v1a")
    ck.append("ak", "hello")
    check(ck, "ak", "hello")
    ck.put("ak", "xx")
    ck.append("ak", "yy")
    check(ck, "ak", "xxyy")

    # Test 2: add a backup
    s2 = add()
    assert wait_for(lambda: vck.get().backup == s2.me), "backup never came up"
    ck.put("3", "33")
    check(ck, "3", "33")
    time.sleep(3 * PING_INTERVAL)
    ck.put("4", "44")
    check(ck, "4", "44")

    # Test 3: clients and servers cache the view
    count1 = vs.rpc_count()
    t1 = time.monotonic()
    for i in range(100):
        ck.put(f"xk{i}", str(i))
    count2 = vs.rpc_count()
    allowed = 2 * int((time.monotonic() - t1) / 0.1)
    assert count2 - count1 <= allowed + 20, "too many viewserver RPCs"

    # Test 4: primary failure
    s1.kill()
    assert wait_for(lambda: vck.get().primary == s2.me), "backup never switched to primary"
    check(ck, "1", "v1a")
    check(ck, "3", "33")
    check(ck, "4", "44")

    # Test 5: kill last server, new one should not be active
    s2.kill()
    add()
    time.sleep(1.0)
    done = threading.Event()

    def stale_get():
        ck.get("1")
        done.set()

    threading.Thread(target=stale_get, daemon=True).start()
    assert not done.wait(2.0), "Get returned even though no initialized primary"


def test_at_most_once_unreliable(cluster):
    vs, add = cluster
    vck = ViewClerk("", vs.me)
    s1 = add()
    s1.set_unreliable(True)
    assert wait_for(lambda: vck.primary() == s1.me)
    time.sleep(DEADTIME)

    ck = Clerk(vs.me, "")
    expected = ""
    for i in range(100):
        ck.append("counter", str(i))
        expected += str(i)
    assert ck.get("counter") == expected


def test_put_after_backup_and_primary_failure(cluster):
    vs, add = cluster
    vck = ViewClerk("", vs.me)
    s1 = add()
    time.sleep(1.0)
    s2 = add()
    time.sleep(1.0)
    s3 = add()

    assert wait_for(lambda: vck.get().primary != "" and vck.get().backup != "")
    time.sleep(1.0)
    v1 = vck.get()
    assert v1.primary == s1.me and v1.backup == s2.me

    ck = Clerk(vs.me, "")
    ck.put("a", "aa")
    ck.put("b", "bb")
    ck.put("c", "cc")
    check(ck, "a", "aa")
    check(ck, "b", "bb")
    check(ck, "c", "cc")

    # Test 7: Put immediately after backup failure
    s2.kill()
    ck.put("a", "aaa")
    check(ck, "a", "aaa")
    assert wait_for(
        lambda: (lambda v: v.viewnum > v1.viewnum and v.primary and v.backup)(vck.get())
    )
    time.sleep(1.0)
    v2 = vck.get()
    assert v2.primary == s1.me and v2.backup == s3.me
    check(ck, "a", "aaa")

    # Test 8: Put immediately after primary failure
    s1.kill()
    ck.put("b", "bbb")
    check(ck, "b", "bbb")
    assert wait_for(lambda: (lambda v: v.viewnum > v2.viewnum and v.primary)(vck.get()))
    time.sleep(1.0)
    check(ck, "a", "aaa")
    check(ck, "b", "bbb")
    check(ck, "c", "cc")


def test_concurrent_same_append(cluster):
    vs, add = cluster
    vck = ViewClerk("", vs.me)
    servers = [add(), add()]
    assert wait_for(lambda: vck.get().primary != "" and vck.get().backup != "")
    time.sleep(DEADTIME)
    view1 = vck.get()

    counts = [-1, -1, -1]

    def client(i):
        ck = Clerk(vs.me, "")
        n = 0
        while n < 50:
            ck.append("k", f"x {i} {n} y")
            n += 1
        counts[i] = n

    threads = [threading.Thread(target=client, args=(i,), daemon=True) for i in range(3)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(60)
    assert counts == [50, 50, 50]

    ck = Clerk(vs.me, "")
    primaryv = ck.get("k")
    check_appends(primaryv, counts)

    next(s for s in servers if s.me == view1.primary).kill()
    assert wait_for(lambda: vck.get().primary == view1.backup), "wrong Primary"

    backupv = ck.get("k")
    check_appends(backupv, counts)
    assert backupv == primaryv