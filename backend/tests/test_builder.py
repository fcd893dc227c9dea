import pytest

from buildify.builder import BuilderSession
from buildify.llm.client import UnknownTemplateError
from buildify.sandbox.reconciler import SandboxState
from buildify.steps import StepStatus, StepType

from conftest import FakeLLM, project_markup


APP_REPLY = 'Here you go.\n<file path="src/App.jsx">export default () => <h1>Todo</h1>;</file>'


@pytest.mark.asyncio
async def test_start_seeds_template_then_applies_reply(reconciler, runtime):
    llm = FakeLLM(answer="react", replies=[APP_REPLY])
    session = BuilderSession(reconciler, llm)
    snap = await session.start("  a todo app  ")

    assert snap["prompt"] == "a todo app"
    assert snap["template_set"] is True
    assert [s["id"] for s in snap["steps"]] == list(range(1, len(session.steps) + 1))
    assert all(s.status == StepStatus.COMPLETED for s in session.steps)
    assert session.read_file("src/App.jsx") == "export default () => <h1>Todo</h1>;"
    assert session.read_file("package.json") is not None

    # template prompts, the user prompt, then the reply
    assert [m.role for m in session.messages] == ["user", "user", "user", "assistant"]
    assert session.messages[2].content == "a todo app"
    assert llm.calls[0][-1] == {"role": "user", "content": "a todo app"}

    status = await session.wait_idle()
    assert status.state == SandboxState.SERVING
    assert runtime.session.spawned == ["npm install", "npm run dev"]


@pytest.mark.asyncio
async def test_node_template(reconciler):
    session = BuilderSession(reconciler, FakeLLM(answer="node"))
    await session.start("a cli tool")
    assert session.read_file("index.js") is not None
    assert session.tree.get("src") is None


@pytest.mark.asyncio
async def test_unknown_template_raises(reconciler):
    session = BuilderSession(reconciler, FakeLLM(answer="python"))
    with pytest.raises(UnknownTemplateError):
        await session.start("a django app")
    assert session.steps == []


@pytest.mark.asyncio
async def test_send_message_continues_conversation(reconciler):
    llm = FakeLLM(replies=[APP_REPLY, '<file path="src/App.jsx">v2</file><shell>npm run lint</shell>'])
    session = BuilderSession(reconciler, llm)
    await session.start("todo")
    before = len(session.steps)

    snap = await session.send_message("make it blue")

    sent = llm.calls[-1]
    assert sent[-1] == {"role": "user", "content": "make it blue"}
    assert sent[-2]["role"] == "assistant"
    assert session.read_file("src/App.jsx") == "v2"
    new_steps = session.steps[before:]
    assert [s.type for s in new_steps] == [StepType.CREATE_FILE, StepType.RUN_SCRIPT]
    assert [s.id for s in new_steps] == [before + 1, before + 2]
    assert len(snap["steps"]) == before + 2


@pytest.mark.asyncio
async def test_conflicting_step_is_reported_and_tree_kept(reconciler):
    session = BuilderSession(reconciler)
    session.add_response(project_markup())
    session.sync()
    before = session.tree.model_dump()

    session.add_response('<file path="src">not a folder</file>')
    changed = session.sync()

    assert changed is False
    assert session.tree.model_dump() == before
    assert len(session.conflicts) == 1
    conflict = session.conflicts[0]
    assert conflict.step_id == 3
    assert conflict.path == "src"
    assert session.steps[-1].status == StepStatus.REJECTED


@pytest.mark.asyncio
async def test_rejected_step_does_not_block_the_rest_of_the_batch(reconciler):
    session = BuilderSession(reconciler)
    session.add_response('<file path="src/app.js">a</file>')
    session.sync()

    session.add_response('<folder path="src/app.js"/>\n<file path="src/util.js">u</file>')
    assert session.sync() is True

    assert [s.status for s in session.steps] == [
        StepStatus.COMPLETED,
        StepStatus.REJECTED,
        StepStatus.COMPLETED,
    ]
    assert [c.step_id for c in session.conflicts] == [2]
    assert session.read_file("src/util.js") == "u"
    assert session.read_file("src/app.js") == "a"


@pytest.mark.asyncio
async def test_sync_without_pending_steps(reconciler):
    session = BuilderSession(reconciler)
    assert session.sync() is False
    session.add_response(project_markup())
    assert session.sync() is True
    assert session.sync() is False
    await session.wait_idle()


def test_sync_outside_event_loop_only_builds_tree(reconciler, runtime):
    session = BuilderSession(reconciler)
    session.add_response(project_markup())
    assert session.sync() is True
    assert session.schedule_reconcile() is None
    assert runtime.boots == 0
    assert session.snapshot()["status"]["phase"] == "in-progress"


@pytest.mark.asyncio
async def test_start_without_model_is_an_error(reconciler):
    session = BuilderSession(reconciler)
    with pytest.raises(RuntimeError):
        await session.start("anything")


@pytest.mark.asyncio
async def test_close_stops_preview_updates(reconciler):
    session = BuilderSession(reconciler)
    session.close()
    assert reconciler.closed
    session.add_response(project_markup())
    session.sync()
    assert session.schedule_reconcile() is None
    assert session.retry() is None
    assert reconciler.status.state == SandboxState.UNINITIALIZED
