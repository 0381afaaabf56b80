import asyncio

from rproxy.utils import asyncio_utils


async def ttask():
    await asyncio.sleep(999)


async def test_create_task():
    task = asyncio_utils.create_task(
        ttask(), name="ttask", client=("127.0.0.1", 42313)
    )
    assert "ttask" in task.get_name()
    assert task.client == ("127.0.0.1", 42313)  # type: ignore
    assert task.created  # type: ignore
    task.cancel()
    await asyncio.wait([task])


async def test_set_task_debug_info():
    async def handler():
        current = asyncio.current_task()
        assert current
        asyncio_utils.set_task_debug_info(current, name="client connection handler")
        return current.get_name()

    assert (await asyncio.create_task(handler())).startswith("client connection handler")


async def test_install_exception_handler():
    loop = asyncio.get_running_loop()
    errors = []

    def handler(loop, context):
        errors.append(context)

    previous = loop.get_exception_handler()
    with asyncio_utils.install_exception_handler(handler):
        loop.call_exception_handler({"message": "boom"})
    assert loop.get_exception_handler() is previous
    assert errors == [{"message": "boom"}]
