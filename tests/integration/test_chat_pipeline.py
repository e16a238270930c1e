"""End-to-end tests for the chat pipeline over in-memory stores."""

import json
import uuid
from datetime import datetime, timedelta

import pytest

from backend.assistant.blob.store import InMemoryBlobStore
from backend.assistant.chat.pipeline import (
    GROUP_NOT_FOUND_REPLY,
    MODEL_UNAVAILABLE_REPLY,
    NO_FILES_REPLY,
    NOT_A_MEMBER_REPLY,
    ChatPipeline,
)
from backend.assistant.config import Settings
from backend.assistant.db.context import RequestContext
from backend.assistant.db.inmemory import InMemoryDatabase
from backend.assistant.db.repositories import Stores
from backend.assistant.llm.client import DeterministicStubClient, LLMServiceError
from backend.assistant.models.context import ChatTurn, ContextPayload


class ScriptedLLM(DeterministicStubClient):
    """Returns a fixed reply and records every context it was given."""

    def __init__(self, reply: str = "Happy to help.", accept_uploads: bool = False) -> None:
        self.reply = reply
        self.accept_uploads = accept_uploads
        self.contexts: list[ContextPayload] = []
        self.uploads: list[str] = []

    async def generate_reply(self, *, message: str, context: ContextPayload) -> str:
        self.contexts.append(context)
        return self.reply

    async def upload_attachment(self, data: bytes, *, media_type: str, display_name: str) -> str:
        if not self.accept_uploads:
            return await super().upload_attachment(
                data, media_type=media_type, display_name=display_name
            )
        self.uploads.append(display_name)
        return f"file-{len(self.uploads)}"


class DownLLM(DeterministicStubClient):
    async def generate_reply(self, *, message: str, context: ContextPayload) -> str:
        raise LLMServiceError("service unavailable")


class FailingChatRepository:
    async def recent_turns(self, group_id: uuid.UUID, limit: int) -> list[ChatTurn]:
        return []

    async def append(self, turn: ChatTurn) -> None:
        raise RuntimeError("chat log is read-only")


@pytest.fixture
def workspace(db: InMemoryDatabase) -> dict:
    """A group with a manager, two employees and role grants."""
    group = db.add_group("Growth")
    manager = db.add_user("maya@example.com", handle="maya", role="manager")
    eli = db.add_user("eli@example.com", handle="eli")
    noor = db.add_user("noor@example.com", handle="noor")
    stranger = db.add_user("stranger@example.com")
    db.add_member(group.group_id, manager.user_id, role="manager")
    db.add_member(group.group_id, eli.user_id)
    db.add_member(group.group_id, noor.user_id)
    db.grant_role_permission("employee", "notes:read")
    return {
        "group": group,
        "manager": manager,
        "eli": eli,
        "noor": noor,
        "stranger": stranger,
    }


def _pipeline(
    stores: Stores, llm, blob_store: InMemoryBlobStore, settings: Settings
) -> ChatPipeline:
    return ChatPipeline(stores, llm, blob_store, settings)


def _command_reply(**fields: object) -> str:
    return "COMMAND: " + json.dumps({"type": "task_assignment", "title": "Write recap", **fields})


class TestFileReferences:
    @pytest.mark.asyncio
    async def test_explicit_reference_attaches_document(
        self,
        stores: Stores,
        db: InMemoryDatabase,
        blob_store: InMemoryBlobStore,
        settings: Settings,
        workspace: dict,
    ) -> None:
        group_id = workspace["group"].group_id
        db.add_document(
            group_id, "Q3 report.pdf", media_type="application/pdf", storage_locator="g/q3.pdf"
        )
        blob_store.put("g/q3.pdf", b"%PDF-1.4 report", "application/pdf")
        llm = ScriptedLLM(reply="Revenue grew in Q3.", accept_uploads=True)
        ctx = RequestContext(user_id=workspace["eli"].user_id)

        response = await _pipeline(stores, llm, blob_store, settings).handle(
            'file: "Q3 report.pdf"', group_id, ctx
        )

        assert response.response_text == "Revenue grew in Q3."
        assert response.is_command is False
        assert response.requires_permission is None
        assert llm.uploads == ["Q3 report.pdf"]
        context = llm.contexts[0]
        assert [a.label for a in context.attachment_refs] == ["Q3 report.pdf"]
        assert context.text_snippets == []

    @pytest.mark.asyncio
    async def test_explicit_reference_injects_text(
        self,
        stores: Stores,
        db: InMemoryDatabase,
        blob_store: InMemoryBlobStore,
        settings: Settings,
        workspace: dict,
    ) -> None:
        group_id = workspace["group"].group_id
        db.add_document(group_id, "notes.txt", media_type="text/plain", storage_locator="g/n")
        blob_store.put("g/n", b"Retro moved to Thursday.", "text/plain")
        ctx = RequestContext(user_id=workspace["eli"].user_id)

        response = await _pipeline(stores, DeterministicStubClient(), blob_store, settings).handle(
            "what does file: notes.txt say?", group_id, ctx
        )

        assert "Here is what I found in notes.txt" in response.response_text
        assert "Retro moved to Thursday." in response.response_text

    @pytest.mark.asyncio
    async def test_implicit_reference_without_match_falls_through(
        self,
        stores: Stores,
        db: InMemoryDatabase,
        blob_store: InMemoryBlobStore,
        settings: Settings,
        workspace: dict,
    ) -> None:
        group_id = workspace["group"].group_id
        db.add_document(group_id, "Roadmap.pdf", storage_locator="g/roadmap.pdf")
        llm = ScriptedLLM(reply="I don't see that file, but here is what I know.")
        ctx = RequestContext(user_id=workspace["eli"].user_id)

        response = await _pipeline(stores, llm, blob_store, settings).handle(
            "summarize budget.xlsx", group_id, ctx
        )

        assert response.response_text == "I don't see that file, but here is what I know."
        assert response.requires_permission is None
        assert llm.contexts[0].text_snippets == []
        assert llm.contexts[0].attachment_refs == []

    @pytest.mark.asyncio
    async def test_explicit_reference_without_match_skips_model(
        self,
        stores: Stores,
        blob_store: InMemoryBlobStore,
        settings: Settings,
        workspace: dict,
    ) -> None:
        llm = ScriptedLLM()
        ctx = RequestContext(user_id=workspace["eli"].user_id)

        response = await _pipeline(stores, llm, blob_store, settings).handle(
            'file: "Missing Plan"', workspace["group"].group_id, ctx
        )

        assert 'couldn\'t find a file named "Missing Plan" in Growth' in response.response_text
        assert llm.contexts == []

    @pytest.mark.asyncio
    async def test_unreadable_document_gets_placeholder(
        self,
        stores: Stores,
        db: InMemoryDatabase,
        blob_store: InMemoryBlobStore,
        settings: Settings,
        workspace: dict,
    ) -> None:
        group_id = workspace["group"].group_id
        db.add_document(group_id, "scan.pdf", media_type="application/pdf", storage_locator="s")
        blob_store.put("s", b"\x00\x01 not a pdf", "application/pdf")
        llm = ScriptedLLM()
        ctx = RequestContext(user_id=workspace["eli"].user_id)

        await _pipeline(stores, llm, blob_store, settings).handle("read scan.pdf", group_id, ctx)

        snippet = llm.contexts[0].text_snippets[0]
        assert snippet.label == "scan.pdf"
        assert snippet.text == "No readable text could be extracted from this file."


class TestListFiles:
    @pytest.mark.asyncio
    async def test_listing_is_capped_and_newest_first(
        self,
        stores: Stores,
        db: InMemoryDatabase,
        blob_store: InMemoryBlobStore,
        settings: Settings,
        workspace: dict,
    ) -> None:
        group_id = workspace["group"].group_id
        start = datetime(2025, 3, 1)
        for i in range(55):
            db.add_document(
                group_id,
                f"file-{i:02d}.txt",
                media_type="text/plain",
                storage_locator=f"g/{i}",
                uploaded_at=start + timedelta(hours=i),
            )
        llm = ScriptedLLM()
        ctx = RequestContext(user_id=workspace["eli"].user_id)

        response = await _pipeline(stores, llm, blob_store, settings).handle(
            "list files", group_id, ctx
        )

        lines = response.response_text.splitlines()
        assert lines[0] == "Here are the files in Growth:"
        assert len(lines) == 51
        assert lines[1] == "1. file-54.txt (text/plain, uploaded 2025-03-03)"
        assert lines[-1].startswith("50. file-05.txt")
        assert llm.contexts == []

    @pytest.mark.asyncio
    async def test_empty_group(
        self,
        stores: Stores,
        blob_store: InMemoryBlobStore,
        settings: Settings,
        workspace: dict,
    ) -> None:
        ctx = RequestContext(user_id=workspace["eli"].user_id)
        response = await _pipeline(stores, ScriptedLLM(), blob_store, settings).handle(
            "show me the documents", workspace["group"].group_id, ctx
        )
        assert response.response_text == NO_FILES_REPLY


class TestCommands:
    @pytest.mark.asyncio
    async def test_command_without_permission_is_refused(
        self,
        stores: Stores,
        db: InMemoryDatabase,
        blob_store: InMemoryBlobStore,
        settings: Settings,
        workspace: dict,
    ) -> None:
        llm = ScriptedLLM(reply=_command_reply(assignToAllMembers=True))
        ctx = RequestContext(user_id=workspace["eli"].user_id)

        response = await _pipeline(stores, llm, blob_store, settings).handle(
            "assign a recap to everyone", workspace["group"].group_id, ctx
        )

        assert response.is_command is False
        assert response.requires_permission == "permission_denied"
        assert db.tasks == []

    @pytest.mark.asyncio
    async def test_all_members_with_duplicate_recipient(
        self,
        stores: Stores,
        db: InMemoryDatabase,
        blob_store: InMemoryBlobStore,
        settings: Settings,
        workspace: dict,
    ) -> None:
        llm = ScriptedLLM(
            reply=_command_reply(assignToAllMembers=True, assignedTo=["noor@example.com"])
        )
        ctx = RequestContext(user_id=workspace["manager"].user_id)

        response = await _pipeline(stores, llm, blob_store, settings).handle(
            "assign a recap to the whole team", workspace["group"].group_id, ctx
        )

        assert response.is_command is True
        assert response.requires_permission is None
        assert response.response_text == '✅ Task "Write recap" has been assigned to 3 user(s).'
        assert len(db.tasks) == 3
        assert {t.assigned_to_user_id for t in db.tasks} == {
            workspace["manager"].user_id,
            workspace["eli"].user_id,
            workspace["noor"].user_id,
        }

    @pytest.mark.asyncio
    async def test_invalid_command_json_is_plain_reply(
        self,
        stores: Stores,
        db: InMemoryDatabase,
        blob_store: InMemoryBlobStore,
        settings: Settings,
        workspace: dict,
    ) -> None:
        llm = ScriptedLLM(reply='COMMAND: {"type": "task_assignment", title: }  ')
        ctx = RequestContext(user_id=workspace["manager"].user_id)

        response = await _pipeline(stores, llm, blob_store, settings).handle(
            "assign something", workspace["group"].group_id, ctx
        )

        assert response.is_command is False
        assert response.requires_permission is None
        assert response.response_text == 'COMMAND: {"type": "task_assignment", title: }'
        assert db.tasks == []

    @pytest.mark.asyncio
    async def test_model_permission_denial(
        self,
        stores: Stores,
        blob_store: InMemoryBlobStore,
        settings: Settings,
        workspace: dict,
    ) -> None:
        llm = ScriptedLLM(reply="PERMISSION_DENIED: You need finance:read to see payroll.")
        ctx = RequestContext(user_id=workspace["eli"].user_id)

        response = await _pipeline(stores, llm, blob_store, settings).handle(
            "show payroll", workspace["group"].group_id, ctx
        )

        assert response.response_text == "You need finance:read to see payroll."
        assert response.requires_permission == "permission_denied"
        assert response.is_command is False


class TestAccessAndFailures:
    @pytest.mark.asyncio
    async def test_unknown_group(
        self, stores: Stores, blob_store: InMemoryBlobStore, settings: Settings, workspace: dict
    ) -> None:
        ctx = RequestContext(user_id=workspace["eli"].user_id)
        response = await _pipeline(stores, ScriptedLLM(), blob_store, settings).handle(
            "hello", uuid.uuid4(), ctx
        )
        assert response.response_text == GROUP_NOT_FOUND_REPLY

    @pytest.mark.asyncio
    async def test_non_member_is_refused(
        self,
        stores: Stores,
        db: InMemoryDatabase,
        blob_store: InMemoryBlobStore,
        settings: Settings,
        workspace: dict,
    ) -> None:
        llm = ScriptedLLM()
        ctx = RequestContext(user_id=workspace["stranger"].user_id)

        response = await _pipeline(stores, llm, blob_store, settings).handle(
            "list files", workspace["group"].group_id, ctx
        )

        assert response.response_text == NOT_A_MEMBER_REPLY
        assert response.requires_permission == "permission_denied"
        assert llm.contexts == []
        assert db.turns == []

    @pytest.mark.asyncio
    async def test_model_failure_returns_apology(
        self,
        stores: Stores,
        db: InMemoryDatabase,
        blob_store: InMemoryBlobStore,
        settings: Settings,
        workspace: dict,
    ) -> None:
        ctx = RequestContext(user_id=workspace["eli"].user_id)

        response = await _pipeline(stores, DownLLM(), blob_store, settings).handle(
            "hello", workspace["group"].group_id, ctx
        )

        assert response.response_text == MODEL_UNAVAILABLE_REPLY
        assert response.is_command is False
        assert [t.content for t in db.turns] == ["hello", MODEL_UNAVAILABLE_REPLY]

    @pytest.mark.asyncio
    async def test_turns_are_logged(
        self,
        stores: Stores,
        db: InMemoryDatabase,
        blob_store: InMemoryBlobStore,
        settings: Settings,
        workspace: dict,
    ) -> None:
        ctx = RequestContext(user_id=workspace["eli"].user_id)

        await _pipeline(stores, ScriptedLLM(reply="Hi Eli."), blob_store, settings).handle(
            "hi", workspace["group"].group_id, ctx
        )

        assert [(t.role, t.content) for t in db.turns] == [("user", "hi"), ("assistant", "Hi Eli.")]
        assert db.turns[0].metadata == {"intent": "none"}
        assert all(t.group_id == workspace["group"].group_id for t in db.turns)

    @pytest.mark.asyncio
    async def test_previous_turns_reach_the_model(
        self,
        stores: Stores,
        blob_store: InMemoryBlobStore,
        settings: Settings,
        workspace: dict,
    ) -> None:
        llm = ScriptedLLM(reply="ok")
        pipeline = _pipeline(stores, llm, blob_store, settings)
        ctx = RequestContext(user_id=workspace["eli"].user_id)
        group_id = workspace["group"].group_id

        await pipeline.handle("first", group_id, ctx)
        await pipeline.handle("second", group_id, ctx)

        turns = llm.contexts[1].recent_turns
        assert [(t.role, t.content) for t in turns] == [("user", "first"), ("assistant", "ok")]

    @pytest.mark.asyncio
    async def test_logging_failure_is_swallowed(
        self,
        stores: Stores,
        blob_store: InMemoryBlobStore,
        settings: Settings,
        workspace: dict,
    ) -> None:
        stores.chats = FailingChatRepository()
        ctx = RequestContext(user_id=workspace["eli"].user_id)

        pipeline = _pipeline(stores, ScriptedLLM(reply="Still here."), blob_store, settings)

        response = await pipeline.handle("ping", workspace["group"].group_id, ctx)

        assert response.response_text == "Still here."
