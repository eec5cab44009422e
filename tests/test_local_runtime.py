import asyncio
from pathlib import Path
from typing import AsyncGenerator

import pytest
import pytest_asyncio

from repo_preview.config import PreviewConfig
from repo_preview.models import DirectoryEntry, FileEntry
from repo_preview.runtimes.local import LocalProcess, LocalRuntime


@pytest_asyncio.fixture
async def runtime(tmp_path: Path) -> AsyncGenerator[LocalRuntime, None]:
    config = PreviewConfig(dev_server_port=1, server_poll_interval=0.05)
    rt = LocalRuntime(config=config, base_dir=str(tmp_path))
    await rt.boot()
    yield rt
    await rt.teardown()


async def _collect(process: LocalProcess) -> str:
    return "".join([chunk async for chunk in process.output()])


@pytest.mark.asyncio
async def test_boot_and_teardown(tmp_path: Path) -> None:
    rt = LocalRuntime(config=PreviewConfig(dev_server_port=1), base_dir=str(tmp_path))
    await rt.boot()
    root = rt.root
    assert root is not None and root.is_dir()
    assert root.parent == tmp_path

    await rt.teardown()
    assert not root.exists()
    assert rt.root is None


@pytest.mark.asyncio
async def test_mount_requires_boot() -> None:
    rt = LocalRuntime(config=PreviewConfig())
    with pytest.raises(RuntimeError, match="Sandbox not booted"):
        await rt.mount({"a": DirectoryEntry()})


@pytest.mark.asyncio
async def test_mount_directories_and_files(runtime: LocalRuntime) -> None:
    await runtime.mount({"src": DirectoryEntry()})
    await runtime.mount({"src/index.js": FileEntry(contents="export default 1")})
    await runtime.mount({"logo.png": FileEntry(contents=b"\x89PNG")})

    assert runtime.root is not None
    assert (runtime.root / "src" / "index.js").read_text() == "export default 1"
    assert (runtime.root / "logo.png").read_bytes() == b"\x89PNG"
    assert await runtime.read_file("src/index.js") == "export default 1"


@pytest.mark.asyncio
async def test_mount_without_parent_fails(runtime: LocalRuntime) -> None:
    with pytest.raises(FileNotFoundError):
        await runtime.mount({"a/b.js": FileEntry(contents="x")})
    with pytest.raises(FileNotFoundError):
        await runtime.mount({"a/b": DirectoryEntry()})


@pytest.mark.asyncio
async def test_paths_cannot_escape_sandbox(runtime: LocalRuntime) -> None:
    with pytest.raises(ValueError, match="escapes sandbox"):
        await runtime.mount({"../outside.js": FileEntry(contents="x")})
    with pytest.raises(ValueError):
        await runtime.read_file("../../etc/passwd")


@pytest.mark.asyncio
async def test_write_file_creates_parents(runtime: LocalRuntime) -> None:
    await runtime.write_file("deep/nested/file.txt", "hello")
    assert await runtime.read_file("deep/nested/file.txt") == "hello"

    with pytest.raises(FileNotFoundError):
        await runtime.read_file("missing.txt")


@pytest.mark.asyncio
async def test_spawn_streams_output(runtime: LocalRuntime) -> None:
    process = await runtime.spawn("sh", ["-c", "echo hello; echo oops 1>&2; exit 3"])
    assert isinstance(process, LocalProcess)

    output = await _collect(process)
    assert await process.wait() == 3
    assert "hello" in output
    assert "oops" in output


@pytest.mark.asyncio
async def test_spawn_runs_in_sandbox_root(runtime: LocalRuntime) -> None:
    await runtime.write_file("marker.txt", "here")
    process = await runtime.spawn("ls")
    assert "marker.txt" in await _collect(process)


@pytest.mark.asyncio
async def test_interactive_input_and_terminal_size(runtime: LocalRuntime) -> None:
    process = await runtime.spawn("sh", terminal=(120, 40))
    assert isinstance(process, LocalProcess)
    assert process.size == (120, 40)

    await process.write('echo "$COLUMNS"x"$LINES"\n')
    await process.write("exit\n")
    assert "120x40" in await _collect(process)
    assert await process.wait() == 0

    await process.resize(80, 24)
    assert process.size == (80, 24)


@pytest.mark.asyncio
async def test_teardown_terminates_processes(tmp_path: Path) -> None:
    rt = LocalRuntime(config=PreviewConfig(dev_server_port=1), base_dir=str(tmp_path))
    await rt.boot()
    process = await rt.spawn("sleep", ["30"])

    await rt.teardown()

    assert isinstance(process, LocalProcess)
    assert process._process.returncode is not None


@pytest.mark.asyncio
async def test_server_ready_fires_when_port_opens(runtime: LocalRuntime) -> None:
    ready: asyncio.Queue[tuple[int, str]] = asyncio.Queue()
    unsubscribe = runtime.on("server-ready", lambda port, host: ready.put_nowait((port, host)))

    async def handle(reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        writer.close()

    server = await asyncio.start_server(handle, "127.0.0.1", 0)
    port = server.sockets[0].getsockname()[1]
    runtime.ports = {port}

    try:
        assert await asyncio.wait_for(ready.get(), timeout=5) == (port, "http://127.0.0.1")
    finally:
        unsubscribe()
        server.close()
        await server.wait_closed()


@pytest.mark.asyncio
async def test_port_open_before_boot_is_not_server_ready(tmp_path: Path) -> None:
    async def handle(reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        writer.close()

    server = await asyncio.start_server(handle, "127.0.0.1", 0)
    port = server.sockets[0].getsockname()[1]
    rt = LocalRuntime(config=PreviewConfig(dev_server_port=port, server_poll_interval=0.05), base_dir=str(tmp_path))
    ready: asyncio.Queue[tuple[int, str]] = asyncio.Queue()
    rt.on("server-ready", lambda port, host: ready.put_nowait((port, host)))

    await rt.boot()
    try:
        await asyncio.sleep(0.3)
        assert ready.empty()
    finally:
        await rt.teardown()
        server.close()
        await server.wait_closed()


def test_unsupported_event() -> None:
    rt = LocalRuntime(config=PreviewConfig())
    with pytest.raises(ValueError, match="Unsupported event"):
        rt.on("port", lambda port, host: None)  # type: ignore[arg-type]
