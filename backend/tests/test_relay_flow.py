import asyncio
import unittest

from pvp_relay.realtime.relay import RelayService
from pvp_relay.services.room_registry import (
    InvalidRoomStateError,
    Participant,
    RoomNotFoundError,
    SessionRegistry,
)

HOST = "GHOSTWALLET"
GUEST = "GGUESTWALLET"


class FakeChannel:
    def __init__(self, name: str = "") -> None:
        self.name = name
        self.events: list[dict] = []
        self.closed = False

    def send(self, event: dict) -> bool:
        if self.closed:
            return False
        self.events.append(event)
        return True

    def close(self) -> None:
        self.closed = True

    def types(self) -> list[str]:
        return [event["type"] for event in self.events]


class ExplodingChannel(FakeChannel):
    def send(self, event: dict) -> bool:
        raise RuntimeError("socket gone")


class RelayFlowTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.registry = SessionRegistry()
        self.relay = RelayService(self.registry, keepalive_seconds=60)
        self.room = self.registry.create(Participant(HOST, "host-pub"))
        self.code = self.room.code

    async def asyncTearDown(self) -> None:
        await self.relay.shutdown()

    def _join(self) -> None:
        self.relay.join(self.code, Participant(GUEST, "guest-pub"))

    async def test_host_alone_receives_waiting(self) -> None:
        host_channel = FakeChannel()
        self.relay.open_channel(self.code.lower(), HOST, host_channel)
        self.assertEqual(host_channel.events, [{"type": "waiting", "code": self.code}])

    async def test_open_unknown_room_raises(self) -> None:
        with self.assertRaises(RoomNotFoundError):
            self.relay.open_channel("NOPE00", HOST, FakeChannel())

    async def test_join_broadcasts_session_start_to_waiting_host(self) -> None:
        host_channel = FakeChannel()
        self.relay.open_channel(self.code, HOST, host_channel)
        self._join()

        self.assertEqual(host_channel.types(), ["waiting", "session_start"])
        start = host_channel.events[-1]
        self.assertEqual(start["host"], {"walletAddress": HOST, "sessionPub": "host-pub"})
        self.assertEqual(start["guest"], {"walletAddress": GUEST, "sessionPub": "guest-pub"})

    async def test_guest_open_gets_session_start_and_asks_host_for_state(self) -> None:
        host_channel = FakeChannel()
        self.relay.open_channel(self.code, HOST, host_channel)
        self._join()

        guest_channel = FakeChannel()
        self.relay.open_channel(self.code, GUEST, guest_channel)

        self.assertEqual(guest_channel.types(), ["session_start"])
        self.assertNotIn("waiting", guest_channel.types())
        self.assertEqual(
            host_channel.events[-1],
            {"type": "action_request", "action": {"type": "requestState"}},
        )

    async def test_host_open_without_state_does_not_request_state(self) -> None:
        self._join()
        host_channel = FakeChannel()
        self.relay.open_channel(self.code, HOST, host_channel)
        self.assertEqual(host_channel.types(), ["session_start"])

    async def test_late_join_replays_existing_state(self) -> None:
        self._join()
        self.relay.relay(self.code, "host", {"round": 3})

        guest_channel = FakeChannel()
        self.relay.open_channel(self.code, GUEST, guest_channel)

        self.assertEqual(guest_channel.types(), ["session_start", "state_update"])
        self.assertEqual(guest_channel.events[1]["state"], {"round": 3})

    async def test_session_start_is_replayed_on_every_reconnect(self) -> None:
        self._join()
        first = FakeChannel("first")
        second = FakeChannel("second")
        self.relay.open_channel(self.code, GUEST, first)
        self.relay.open_channel(self.code, GUEST, second)
        self.assertEqual(first.types()[0], "session_start")
        self.assertEqual(second.types()[0], "session_start")

    async def test_stale_close_after_reconnect_keeps_new_channel(self) -> None:
        self._join()
        host_channel = FakeChannel()
        self.relay.open_channel(self.code, HOST, host_channel)
        old_guest = FakeChannel("old")
        self.relay.open_channel(self.code, GUEST, old_guest)
        new_guest = FakeChannel("new")
        self.relay.open_channel(self.code, GUEST, new_guest)

        self.assertTrue(old_guest.closed)
        removed = self.relay.close_channel(self.room, GUEST, old_guest)

        self.assertFalse(removed)
        self.assertIs(self.room.subscribers[GUEST], new_guest)
        self.assertNotIn("opponent_disconnected", host_channel.types())

    async def test_genuine_close_notifies_opponent(self) -> None:
        self._join()
        host_channel = FakeChannel()
        guest_channel = FakeChannel()
        self.relay.open_channel(self.code, HOST, host_channel)
        self.relay.open_channel(self.code, GUEST, guest_channel)

        removed = self.relay.close_channel(self.room, GUEST, guest_channel)

        self.assertTrue(removed)
        self.assertNotIn(GUEST, self.room.subscribers)
        self.assertEqual(host_channel.events[-1], {"type": "opponent_disconnected"})
        self.assertNotIn("opponent_disconnected", guest_channel.types())

    async def test_host_state_goes_to_guest_only(self) -> None:
        self._join()
        host_channel = FakeChannel()
        guest_channel = FakeChannel()
        self.relay.open_channel(self.code, HOST, host_channel)
        self.relay.open_channel(self.code, GUEST, guest_channel)
        host_before = list(host_channel.events)

        self.relay.relay(self.code, "host", {"round": 1})

        self.assertEqual(guest_channel.events[-1], {"type": "state_update", "state": {"round": 1}})
        self.assertEqual(host_channel.events, host_before)
        self.assertEqual(self.room.game_state, {"round": 1})

    async def test_guest_action_is_pushed_and_kept_for_poll(self) -> None:
        self._join()
        host_channel = FakeChannel()
        self.relay.open_channel(self.code, HOST, host_channel)

        self.relay.relay(self.code, "guest", {"type": "call"})

        self.assertEqual(host_channel.events[-1], {"type": "action_request", "action": {"type": "call"}})
        self.assertEqual(self.relay.poll_pending(self.code), {"type": "call"})
        self.assertIsNone(self.relay.poll_pending(self.code))

    async def test_guest_action_without_host_channel_is_still_pollable(self) -> None:
        self._join()
        self.relay.relay(self.code, "guest", {"type": "raise", "amount": 40})
        self.relay.relay(self.code, "guest", {"type": "call"})
        self.assertEqual(self.relay.poll_pending(self.code.lower()), {"type": "call"})
        self.assertIsNone(self.relay.poll_pending(self.code))

    async def test_failed_push_is_swallowed(self) -> None:
        self._join()
        self.room.subscribers[HOST] = ExplodingChannel()

        self.relay.relay(self.code, "guest", {"type": "check"})

        self.assertEqual(self.relay.poll_pending(self.code), {"type": "check"})

    async def test_chat_is_broadcast_and_not_persisted(self) -> None:
        self._join()
        host_channel = FakeChannel()
        guest_channel = FakeChannel()
        self.relay.open_channel(self.code, HOST, host_channel)
        self.relay.open_channel(self.code, GUEST, guest_channel)

        self.relay.relay(self.code, "chat", {"from": HOST, "text": "gl hf", "ts": 1700000000000})

        expected = {"type": "chat", "from": HOST, "text": "gl hf", "ts": 1700000000000}
        self.assertEqual(host_channel.events[-1], expected)
        self.assertEqual(guest_channel.events[-1], expected)
        self.assertIsNone(self.room.game_state)
        self.assertIsNone(self.room.pending_guest_action)
        snapshot = self.relay.snapshot(self.code)
        self.assertIsNone(snapshot.game_state)

    async def test_chat_without_text_is_rejected(self) -> None:
        self._join()
        with self.assertRaises(InvalidRoomStateError):
            self.relay.relay(self.code, "chat", {"from": HOST})
        with self.assertRaises(InvalidRoomStateError):
            self.relay.relay(self.code, "chat", "hello")

    async def test_chat_timestamp_defaults_to_server_time(self) -> None:
        self._join()
        guest_channel = FakeChannel()
        self.relay.open_channel(self.code, GUEST, guest_channel)
        self.relay.relay(self.code, "chat", {"from": GUEST, "text": "hi"})
        self.assertIsInstance(guest_channel.events[-1]["ts"], int)

    async def test_relay_before_guest_joins_is_invalid(self) -> None:
        with self.assertRaises(InvalidRoomStateError):
            self.relay.relay(self.code, "guest", {"type": "call"})
        with self.assertRaises(InvalidRoomStateError):
            self.relay.relay(self.code, "host", {"round": 1})

    async def test_relay_unknown_room_raises(self) -> None:
        with self.assertRaises(RoomNotFoundError):
            self.relay.relay("NOPE00", "host", {"round": 1})

    async def test_snapshot_of_unknown_room_is_empty(self) -> None:
        snapshot = self.relay.snapshot("NOPE00")
        self.assertIsNone(snapshot.game_state)
        self.assertIsNone(snapshot.host)
        self.assertIsNone(snapshot.guest)
        self.assertFalse(snapshot.has_guest)

    async def test_snapshot_reports_participants(self) -> None:
        self._join()
        self.relay.relay(self.code, "host", {"round": 2})
        snapshot = self.relay.snapshot(self.code.lower())
        self.assertEqual(snapshot.game_state, {"round": 2})
        self.assertEqual(snapshot.host.wallet_address, HOST)
        self.assertEqual(snapshot.guest.wallet_address, GUEST)
        self.assertTrue(snapshot.has_guest)


class KeepaliveTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.registry = SessionRegistry()
        self.relay = RelayService(self.registry, keepalive_seconds=0.01)
        self.room = self.registry.create(Participant(HOST))

    async def asyncTearDown(self) -> None:
        await self.relay.shutdown()

    async def test_open_channel_receives_pings(self) -> None:
        channel = FakeChannel()
        self.relay.open_channel(self.room.code, HOST, channel)
        await asyncio.sleep(0.1)
        self.assertIn("ping", channel.types())
        self.assertEqual(self.relay.active_keepalives, 1)

    async def test_keepalive_stops_after_close(self) -> None:
        channel = FakeChannel()
        self.relay.open_channel(self.room.code, HOST, channel)
        self.relay.close_channel(self.room, HOST, channel)
        await asyncio.sleep(0.1)
        self.assertEqual(self.relay.active_keepalives, 0)
        self.assertNotIn("ping", channel.types())

    async def test_keepalive_of_superseded_channel_stops(self) -> None:
        old = FakeChannel()
        self.relay.open_channel(self.room.code, HOST, old)
        new = FakeChannel()
        self.relay.open_channel(self.room.code, HOST, new)
        await asyncio.sleep(0.1)
        self.assertEqual(self.relay.active_keepalives, 1)
        self.assertIn("ping", new.types())

    async def test_reopening_same_channel_keeps_one_keepalive(self) -> None:
        channel = FakeChannel()
        self.relay.open_channel(self.room.code, HOST, channel)
        self.relay.open_channel(self.room.code, HOST, channel)
        self.assertEqual(self.relay.active_keepalives, 1)
        self.assertFalse(channel.closed)
        self.assertIs(self.room.subscribers[HOST], channel)

    async def test_shutdown_cancels_keepalives_and_clears_rooms(self) -> None:
        relay = RelayService(SessionRegistry(), keepalive_seconds=60)
        room = relay.registry.create(Participant(HOST))
        channel = FakeChannel()
        relay.open_channel(room.code, HOST, channel)
        self.assertEqual(relay.active_keepalives, 1)

        await relay.shutdown()

        self.assertEqual(relay.active_keepalives, 0)
        self.assertEqual(len(relay.registry), 0)
        self.assertTrue(channel.closed)


if __name__ == "__main__":
    unittest.main()
