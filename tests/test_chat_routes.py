import asyncio
import unittest
from types import SimpleNamespace
from unittest.mock import AsyncMock, Mock, patch

from fastapi import HTTPException
from fastapi.responses import StreamingResponse
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from chatapi.auth.deps import RequestContext
from chatapi.main import app
from chatapi.routers import chat
from chatapi.services import accounts, conversations
from chatapi.services.broker import broker
from chatapi.services.tokens import session_tokens
from fakes import fake_tables


def run_async(coro):
    return asyncio.run(coro)


class ChatRoutesTestCase(unittest.TestCase):
    def setUp(self):
        self.tables = fake_tables()
        for patcher in (
            patch.object(accounts, "T", self.tables),
            patch.object(conversations, "T", self.tables),
        ):
            patcher.start()
            self.addCleanup(patcher.stop)
        self.client = TestClient(app)
        self.ids = {}
        self.headers = {}
        for name in ("alice", "bob", "carol", "dave"):
            acct = accounts.create_account(name, f"{name}@example.com", "hunter22")
            self.ids[name] = acct["account_id"]
            self.headers[name] = {"Authorization": f"Bearer {session_tokens.issue(acct['account_id'])}"}

    def post(self, who, path, body):
        return self.client.post(path, json=body, headers=self.headers[who])

    def get(self, who, path):
        return self.client.get(path, headers=self.headers[who])

    def group(self, creator="alice", members=("bob", "carol"), name="Team"):
        resp = self.post(
            creator,
            "/chat/conversations/group",
            {"name": name, "member_ids": [self.ids[m] for m in members]},
        )
        self.assertEqual(resp.status_code, 200)
        return resp.json()


class TestDirectory(ChatRoutesTestCase):
    def test_users_excludes_caller(self):
        resp = self.get("alice", "/chat/users")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual([u["username"] for u in resp.json()], ["bob", "carol", "dave"])

    def test_requires_authentication(self):
        self.assertEqual(self.client.get("/chat/users").status_code, 401)


class TestConversationRoutes(ChatRoutesTestCase):
    def test_private_conversation_is_shared_between_pair(self):
        a = self.post("alice", "/chat/conversations/private", {"other_account_id": self.ids["bob"]})
        b = self.post("bob", "/chat/conversations/private", {"otherUserId": self.ids["alice"]})
        self.assertEqual(a.status_code, 200)
        self.assertEqual(a.json()["conversation_id"], b.json()["conversation_id"])
        self.assertFalse(a.json()["is_group"])

    def test_private_with_self_is_rejected(self):
        resp = self.post("alice", "/chat/conversations/private", {"other_account_id": self.ids["alice"]})
        self.assertEqual(resp.status_code, 422)

    def test_group_includes_creator(self):
        convo = self.group()
        self.assertEqual(
            sorted(convo["participant_ids"]),
            sorted([self.ids["alice"], self.ids["bob"], self.ids["carol"]]),
        )

    def test_group_with_unknown_member(self):
        resp = self.post("alice", "/chat/conversations/group", {"name": "X", "member_ids": ["ghost"]})
        self.assertEqual(resp.status_code, 422)

    def test_group_messages_and_membership(self):
        cid = self.group()["conversation_id"]
        path = f"/chat/conversations/{cid}/messages"

        self.assertEqual(self.post("dave", path, {"content": "let me in"}).status_code, 403)
        self.assertEqual(self.post("bob", path, {"content": "hi all"}).status_code, 200)
        self.assertEqual(self.post("carol", path, {"content": "hey", "kind": "code"}).status_code, 200)

        history = self.get("alice", path)
        self.assertEqual(history.status_code, 200)
        self.assertEqual([m["content"] for m in history.json()], ["hi all", "hey"])
        self.assertEqual(history.json()[0]["sender_username"], "bob")
        self.assertEqual(self.get("dave", path).status_code, 403)

    def test_listing_orders_by_activity(self):
        with patch.object(conversations, "now_ms", return_value=1):
            older = self.group(name="Older")["conversation_id"]
        with patch.object(conversations, "now_ms", return_value=2):
            newer = self.post("alice", "/chat/conversations/private", {"other_account_id": self.ids["dave"]}).json()
        self.post("bob", f"/chat/conversations/{older}/messages", {"content": "bump"})

        listed = self.get("alice", "/chat/conversations").json()
        self.assertEqual([c["conversation_id"] for c in listed], [older, newer["conversation_id"]])
        self.assertEqual(listed[0]["last_message"]["content"], "bump")
        self.assertEqual(self.get("dave", "/chat/conversations").json()[0]["conversation_id"], newer["conversation_id"])

    def test_image_requires_attachment(self):
        cid = self.group()["conversation_id"]
        resp = self.post("bob", f"/chat/conversations/{cid}/messages", {"kind": "image"})
        self.assertEqual(resp.status_code, 422)


class TestConversationStream(ChatRoutesTestCase):
    def stream(self, who, cid, request):
        ctx = RequestContext(account_id=self.ids[who], account={"account_id": self.ids[who]})
        return chat.conversation_stream(cid, request, ctx)

    def test_non_participant_cannot_stream(self):
        cid = self.group()["conversation_id"]
        with self.assertRaises(HTTPException) as ctx:
            run_async(self.stream("dave", cid, Mock()))
        self.assertEqual(ctx.exception.status_code, 403)

    def test_stream_delivers_new_messages_and_detaches_on_close(self):
        cid = self.group()["conversation_id"]
        request = Mock(is_disconnected=AsyncMock(return_value=False))

        async def scenario():
            resp = await self.stream("carol", cid, request)
            self.assertIsInstance(resp, StreamingResponse)
            it = resp.body_iterator
            opened = await it.__anext__()
            attached = broker.subscriber_count(cid)
            conversations.send_message(cid, self.ids["bob"], "hello")
            event = await asyncio.wait_for(it.__anext__(), timeout=2)
            await it.aclose()
            return opened, attached, event

        opened, attached, event = run_async(scenario())
        self.assertEqual(opened, ": stream-open\n\n")
        self.assertEqual(attached, 1)
        self.assertTrue(event.startswith("event: message\ndata: "))
        self.assertIn('"content":"hello"', event)
        self.assertEqual(broker.subscriber_count(cid), 0)

    def test_stream_pings_then_ends_on_disconnect(self):
        cid = self.group()["conversation_id"]
        request = Mock(is_disconnected=AsyncMock(side_effect=[False, True]))

        async def scenario():
            with patch.object(chat, "S", SimpleNamespace(stream_ping_seconds=0.01)):
                resp = await self.stream("carol", cid, request)
                return [chunk async for chunk in resp.body_iterator]

        chunks = run_async(scenario())
        self.assertEqual(chunks, [": stream-open\n\n", ": ping\n\n"])
        self.assertEqual(broker.subscriber_count(cid), 0)


class TestChatSocket(ChatRoutesTestCase):
    def test_rejects_bad_token(self):
        with self.assertRaises(WebSocketDisconnect) as ctx:
            with self.client.websocket_connect("/chat/ws?token=junk"):
                pass
        self.assertEqual(ctx.exception.code, chat.WS_UNAUTHORIZED)

    def test_rejects_missing_token(self):
        with self.assertRaises(WebSocketDisconnect) as ctx:
            with self.client.websocket_connect("/chat/ws"):
                pass
        self.assertEqual(ctx.exception.code, chat.WS_UNAUTHORIZED)

    def test_subscribe_receive_unsubscribe(self):
        cid = self.group()["conversation_id"]
        token = self.headers["carol"]["Authorization"].split(" ", 1)[1]
        active_before = broker.active_count

        with self.client.websocket_connect(f"/chat/ws?token={token}") as ws:
            ws.send_json({"action": "subscribe", "conversation_id": cid})
            self.assertEqual(ws.receive_json(), {"type": "subscribed", "conversation_id": cid})
            self.assertTrue(accounts.get_account(self.ids["carol"])["online"])

            self.post("bob", f"/chat/conversations/{cid}/messages", {"content": "live"})
            frame = ws.receive_json()
            self.assertEqual(frame["type"], "message")
            self.assertEqual(frame["conversation_id"], cid)
            self.assertEqual(frame["message"]["content"], "live")

            ws.send_json({"action": "ping"})
            self.assertEqual(ws.receive_json(), {"type": "pong"})

            ws.send_json({"action": "unsubscribe", "conversation_id": cid})
            self.assertEqual(ws.receive_json(), {"type": "unsubscribed", "conversation_id": cid})
            self.assertEqual(broker.subscriber_count(cid), 0)

        self.assertEqual(broker.active_count, active_before)
        self.assertFalse(accounts.get_account(self.ids["carol"])["online"])

    def test_subscribe_requires_participation(self):
        cid = self.group()["conversation_id"]
        token = self.headers["dave"]["Authorization"].split(" ", 1)[1]
        with self.client.websocket_connect(f"/chat/ws?token={token}") as ws:
            ws.send_json({"action": "subscribe", "conversation_id": cid})
            frame = ws.receive_json()
        self.assertEqual(frame["type"], "error")
        self.assertEqual(frame["status"], 403)
        self.assertEqual(broker.subscriber_count(cid), 0)

    def test_disconnect_releases_subscriptions(self):
        cid = self.group()["conversation_id"]
        with self.client.websocket_connect("/chat/ws", headers=self.headers["bob"]) as ws:
            ws.send_json({"action": "subscribe", "conversation_id": cid})
            ws.receive_json()
            self.assertEqual(broker.subscriber_count(cid), 1)
        self.assertEqual(broker.subscriber_count(cid), 0)

    def test_bad_frames(self):
        with self.client.websocket_connect("/chat/ws", headers=self.headers["bob"]) as ws:
            ws.send_text("not json")
            self.assertEqual(ws.receive_json()["type"], "error")
            ws.send_json({"action": "subscribe"})
            self.assertEqual(ws.receive_json()["detail"], "conversation_id is required")
            ws.send_json({"action": "dance"})
            self.assertEqual(ws.receive_json()["detail"], "Unknown action: dance")
