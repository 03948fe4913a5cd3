import asyncio
import pytest
from marketplace.realtime.channels import ChannelManager
from tests.fakes import Recorder

@pytest.mark.asyncio
async def test_publish_reaches_only_room_members():
    channels = ChannelManager(send_timeout=0.5)
    a, b, c = Recorder(), Recorder(), Recorder()
    channels.register("a", a)
    channels.register("b", b)
    channels.register("c", c)
    channels.join("svc-1", "a")
    channels.join("svc-1", "b")
    channels.join("svc-2", "c")

    delivered = await channels.publish("svc-1", "newMessage", {"id": "m1"})

    assert delivered == 2
    assert a.frames == [{"event": "newMessage", "data": {"id": "m1"}}]
    assert b.frames == a.frames
    assert c.frames == []

@pytest.mark.asyncio
async def test_members_see_events_in_publication_order():
    channels = ChannelManager(send_timeout=0.5)
    rec = Recorder()
    channels.register("a", rec)
    channels.join("svc-1", "a")
    await asyncio.gather(*(channels.publish("svc-1", "newMessage", {"n": i}) for i in range(20)))
    assert [f["data"]["n"] for f in rec.frames] == list(range(20))

@pytest.mark.asyncio
async def test_dedupe_key_is_relayed_once():
    channels = ChannelManager(send_timeout=0.5, dedupe_history=2)
    rec = Recorder()
    channels.register("a", rec)
    channels.join("svc-1", "a")

    assert await channels.publish("svc-1", "newMessage", {"id": "m1"}, dedupe_key="m1") == 1
    assert await channels.publish("svc-1", "newMessage", {"id": "m1"}, dedupe_key="m1") == 0
    # Historique borné: m1 sort après deux nouvelles clés
    await channels.publish("svc-1", "newMessage", {"id": "m2"}, dedupe_key="m2")
    await channels.publish("svc-1", "newMessage", {"id": "m3"}, dedupe_key="m3")
    assert await channels.publish("svc-1", "newMessage", {"id": "m1"}, dedupe_key="m1") == 1
    assert [f["data"]["id"] for f in rec.frames] == ["m1", "m2", "m3", "m1"]

@pytest.mark.asyncio
async def test_slow_and_broken_connections_are_dropped_silently():
    channels = ChannelManager(send_timeout=0.05)
    ok = Recorder()

    async def slow(frame):
        await asyncio.sleep(1)

    async def broken(frame):
        raise RuntimeError("socket closed")

    channels.register("ok", ok)
    channels.register("slow", slow)
    channels.register("broken", broken)
    for cid in ("ok", "slow", "broken"):
        channels.join("svc-1", cid)

    delivered = await channels.publish("svc-1", "paymentStatusUpdate", {"messageId": "m1", "status": "accepted"})

    assert delivered == 1
    assert channels.members("svc-1") == {"ok"}
    assert len(ok.frames) == 1

@pytest.mark.asyncio
async def test_publish_to_empty_room_is_a_no_op():
    channels = ChannelManager()
    assert await channels.publish("nobody", "newMessage", {"id": "m1"}) == 0

def test_unregister_leaves_every_room():
    channels = ChannelManager()
    channels.register("a", Recorder())
    channels.join("svc-1", "a")
    channels.join("svc-2", "a")
    assert channels.rooms() == {"svc-1": 1, "svc-2": 1}
    channels.unregister("a")
    assert channels.rooms() == {}
    assert channels.members("svc-1") == set()

def test_leave_and_unknown_connection():
    channels = ChannelManager()
    channels.register("a", Recorder())
    channels.join("svc-1", "a")
    channels.leave("svc-1", "a")
    assert channels.members("svc-1") == set()
    with pytest.raises(KeyError):
        channels.join("svc-1", "ghost")

@pytest.mark.asyncio
async def test_empty_rooms_release_their_state():
    channels = ChannelManager(send_timeout=0.5)
    for i in range(100):
        cid, sid = f"c{i}", f"svc-{i}"
        channels.register(cid, Recorder())
        channels.join(sid, cid)
        await channels.publish(sid, "newMessage", {"id": f"m{i}"}, dedupe_key=f"m{i}")
    assert channels.tracked_rooms() == 100

    channels.leave("svc-0", "c0")
    assert channels.tracked_rooms() == 99
    for i in range(1, 100):
        channels.unregister(f"c{i}")
    assert channels.rooms() == {}
    assert channels.tracked_rooms() == 0

    # Publier dans un salon sans membre ne laisse rien derrière
    await channels.publish("ghost", "newMessage", {"id": "x"}, dedupe_key="x")
    assert channels.tracked_rooms() == 0

@pytest.mark.asyncio
async def test_room_state_kept_while_a_publish_is_running():
    channels = ChannelManager(send_timeout=1)
    release = asyncio.Event()

    async def slow(frame):
        await release.wait()

    channels.register("a", slow)
    channels.join("svc-1", "a")
    running = asyncio.ensure_future(channels.publish("svc-1", "newMessage", {"id": "m1"}, dedupe_key="m1"))
    await asyncio.sleep(0.01)
    channels.leave("svc-1", "a")
    # La diffusion en cours tient encore le verrou du salon
    assert channels.tracked_rooms() == 1
    release.set()
    assert await running == 1
    assert channels.tracked_rooms() == 0
