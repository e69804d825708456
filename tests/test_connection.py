import asyncio, json, logging, os, re, tempfile, pytest
from minikc.connection import Connection, ConnectionInfo
from minikc.messages import execute_request, input_reply, interrupt_request, kernel_info_request, make_message
from minikc.wire import WireCodec
from .kernel_utils import *

FILE_KEYS = {"control_port", "shell_port", "hb_port", "stdin_port", "iopub_port", "transport", "ip", "signature_scheme", "key"}


def test_connection_file_contract():
    async def _run():
        cnx = await Connection.create(ip="127.0.0.1")
        path = cnx.connection_file
        with open(path, encoding="utf-8") as f: data = json.load(f)
        assert set(data) == FILE_KEYS
        ports = [data[k] for k in ("control_port", "shell_port", "hb_port", "stdin_port", "iopub_port")]
        assert len(set(ports)) == 5 and all(p > 0 for p in ports)
        assert re.fullmatch(r"[0-9a-f]{64}", data["key"])
        assert re.fullmatch(r"[0-9a-f]{16}", cnx.routing_id)
        assert (data["transport"], data["ip"], data["signature_scheme"]) == ("tcp", "127.0.0.1", "hmac-sha256")
        assert ConnectionInfo.from_file(path) == cnx.info
        if os.name == "posix": assert os.stat(path).st_mode & 0o777 == 0o600
        cnx.dispose()
        assert not os.path.exists(path)
        cnx.dispose()

    run(_run())


def test_each_connection_gets_fresh_key_and_file():
    async def _run():
        async with await Connection.create() as a, await Connection.create() as b:
            assert a.connection_file != b.connection_file
            assert a.info.key != b.info.key

    run(_run())


def test_dispose_tolerates_missing_file():
    async def _run():
        cnx = await Connection.create()
        os.unlink(cnx.connection_file)
        cnx.dispose()
        await asyncio.gather(*cnx.tasks, return_exceptions=True)
        assert all(t.done() for t in cnx.tasks)

    run(_run())


def test_failed_setup_unwinds(tmp_path, monkeypatch):
    monkeypatch.setattr(tempfile, "tempdir", str(tmp_path))
    async def _run():
        with pytest.raises(Exception): await Connection.create(signature_scheme="not-a-scheme")

    run(_run())
    assert list(tmp_path.glob("minikc-*.json")) == []


def test_send_raw_rejects_receive_only_channels():
    async def _run():
        async with await Connection.create() as cnx:
            for channel in ("iopub", "heartbeat"):
                with pytest.raises(ValueError): await cnx.send_raw(make_message("status", channel=channel))

    run(_run())


def test_reply_on_other_channel_is_correlated():
    async def _run():
        async with await Connection.create() as cnx, FakeKernel(cnx) as kernel:
            request = make_message("execute_request", dict(code="1"), channel="shell")
            request.header["msg_id"] = "X"
            replies = cnx.send_and_receive(request)
            first = asyncio.ensure_future(replies.__anext__())
            idents, got = await kernel.recv("shell")
            assert idents == [cnx.routing_id.encode()]
            assert got.msg_id == "X" and got.content == dict(code="1")
            await kernel.send("control", reply_to(got, "status_reply", dict(status="ok")))
            reply = await asyncio.wait_for(first, TIMEOUT)
            assert reply.msg_type == "status_reply"
            assert reply.channel == "control"
            assert reply.parent_id == "X"
            await replies.aclose()
            assert len(cnx.messages) == 0

    run(_run())


def test_concurrent_requests_are_isolated():
    async def _run():
        async with await Connection.create() as cnx, FakeKernel(cnx) as kernel:
            await kernel.wait_subscribed()
            a1, a2 = execute_request("a"), execute_request("b")
            a1.header["msg_id"], a2.header["msg_id"] = "a1", "a2"
            got_a1 = asyncio.ensure_future(collect(cnx.send_and_receive(a1), 4))
            got_a2 = asyncio.ensure_future(collect(cnx.send_and_receive(a2), 4))
            received = {}
            for _ in range(2):
                _, msg = await kernel.recv("shell")
                received[msg.msg_id] = msg
            assert set(received) == {"a1", "a2"}
            for parent in ("a2", "a1", "a2", "a1", "a1", "a2"):
                await kernel.send("iopub", reply_to(received[parent], "stream", dict(name="stdout", text=parent)))
            await kernel.send("shell", reply_to(received["a2"], "execute_reply", dict(status="ok")))
            await kernel.send("shell", reply_to(received["a1"], "execute_reply", dict(status="ok")))
            r1, r2 = await asyncio.gather(got_a1, got_a2)
            assert {m.parent_id for m in r1} == {"a1"}
            assert {m.parent_id for m in r2} == {"a2"}
            assert all(m.content["text"] == "a1" for m in r1 if m.msg_type == "stream")

    run(_run())


def test_channels_are_independent():
    async def _run():
        async with await Connection.create() as cnx, FakeKernel(cnx) as kernel:
            await kernel.wait_subscribed()
            inbound = cnx.messages.subscribe()
            parent = kernel_info_request()
            await asyncio.gather(kernel.send("iopub", reply_to(parent, "status", dict(execution_state="busy"))),
                kernel.send("control", reply_to(parent, "kernel_info_reply", dict(status="ok"))))
            got = await collect(inbound, 2)
            assert sorted(m.channel for m in got) == ["control", "iopub"]
            inbound.close()

    run(_run())


def test_per_channel_order_is_preserved():
    async def _run():
        async with await Connection.create() as cnx, FakeKernel(cnx) as kernel:
            await kernel.wait_subscribed()
            inbound = cnx.messages.subscribe(lambda m: m.channel == "iopub")
            parent = kernel_info_request()
            for i in range(20): await kernel.send("iopub", reply_to(parent, "stream", dict(text=str(i))))
            got = await collect(inbound, 20)
            assert [m.content["text"] for m in got] == [str(i) for i in range(20)]

    run(_run())


def test_bad_signature_is_delivered_when_soft(caplog):
    async def _run():
        async with await Connection.create(strict=False) as cnx, FakeKernel(cnx, key="00" * 32) as kernel:
            inbound = cnx.messages.subscribe()
            await kernel.send("shell", reply_to(kernel_info_request(), "kernel_info_reply", dict(status="ok")))
            (msg,) = await collect(inbound, 1)
            assert msg.content == dict(status="ok")

    with caplog.at_level(logging.WARNING, logger="minikc.wire"): run(_run())
    assert any("Bad message signature" in r.getMessage() for r in caplog.records)


def test_strict_connection_drops_bad_signatures_and_keeps_receiving():
    async def _run():
        async with await Connection.create(strict=True) as cnx, FakeKernel(cnx) as kernel:
            forged = WireCodec("11" * 32, cnx.info.signature_scheme)
            inbound = cnx.messages.subscribe()
            parent = kernel_info_request()
            await kernel.send_frames("shell", forged.encode(reply_to(parent, "kernel_info_reply", dict(n=1)), idents=[kernel.routing_id]))
            await kernel.send("shell", reply_to(parent, "kernel_info_reply", dict(n=2)))
            (msg,) = await collect(inbound, 1)
            assert msg.content == dict(n=2)

    run(_run())


def test_malformed_frames_do_not_stop_receive_loop():
    async def _run():
        async with await Connection.create() as cnx, FakeKernel(cnx) as kernel:
            inbound = cnx.messages.subscribe()
            await kernel.send_frames("shell", [kernel.routing_id, b"garbage"])
            await kernel.send("shell", reply_to(kernel_info_request(), "kernel_info_reply", dict(status="ok")))
            (msg,) = await collect(inbound, 1)
            assert msg.msg_type == "kernel_info_reply"

    run(_run())


def test_cancelled_receiver_detaches_only_itself():
    async def _run():
        async with await Connection.create() as cnx, FakeKernel(cnx) as kernel:
            watcher = cnx.messages.subscribe()
            request = execute_request("1")
            waiter = asyncio.ensure_future(collect(cnx.send_and_receive(request), 1))
            _, got = await kernel.recv("shell")
            assert len(cnx.messages) == 2
            waiter.cancel()
            with pytest.raises(asyncio.CancelledError): await waiter
            assert len(cnx.messages) == 1
            await kernel.send("shell", reply_to(got, "execute_reply", dict(status="ok")))
            (msg,) = await collect(watcher, 1)
            assert msg.parent_id == request.msg_id

    run(_run())


def test_unmatched_reply_is_not_an_error():
    async def _run():
        async with await Connection.create() as cnx, FakeKernel(cnx) as kernel:
            inbound = cnx.messages.subscribe()
            orphan = reply_to(kernel_info_request(), "kernel_info_reply", dict(status="ok"))
            await kernel.send("shell", orphan)
            (msg,) = await collect(inbound, 1)
            assert msg.parent_id == orphan.parent_id

    run(_run())


def test_input_reply_is_sent_on_stdin():
    async def _run():
        async with await Connection.create() as cnx, FakeKernel(cnx) as kernel:
            prompt = make_message("input_request", dict(prompt="name? "))
            await cnx.send_raw(input_reply("bob", prompt))
            idents, got = await kernel.recv("stdin")
            assert idents == [cnx.routing_id.encode()]
            assert got.msg_type == "input_reply"
            assert got.content == dict(value="bob")
            assert got.parent_id == prompt.msg_id

    run(_run())


def test_interrupt_request_is_sent_on_control():
    async def _run():
        async with await Connection.create() as cnx, FakeKernel(cnx) as kernel:
            request = interrupt_request()
            await cnx.send_raw(request)
            idents, got = await kernel.recv("control")
            assert idents == [cnx.routing_id.encode()]
            assert got.msg_id == request.msg_id and got.msg_type == "interrupt_request"

    run(_run())


def test_send_and_receive_sends_on_first_iteration():
    async def _run():
        async with await Connection.create() as cnx, FakeKernel(cnx) as kernel:
            request = kernel_info_request()
            replies = cnx.send_and_receive(request)
            await asyncio.sleep(0.2)
            assert not await kernel.sockets["shell"].poll(100)
            assert len(cnx.messages) == 0
            first = asyncio.ensure_future(replies.__anext__())
            _, got = await kernel.recv("shell")
            assert got.msg_id == request.msg_id
            await kernel.send("shell", reply_to(got, "kernel_info_reply", dict(status="ok")))
            assert (await asyncio.wait_for(first, TIMEOUT)).msg_type == "kernel_info_reply"
            await replies.aclose()

    run(_run())
