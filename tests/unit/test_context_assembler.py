"""Tests for context assembly and document representation strategies."""

import logging
import uuid
from datetime import date, datetime, timedelta

import pytest

from backend.assistant.blob.store import InMemoryBlobStore
from backend.assistant.chat.context_assembler import AssemblyContext, ContextAssembler
from backend.assistant.config import Settings
from backend.assistant.db.inmemory import InMemoryDatabase
from backend.assistant.db.repositories import Stores
from backend.assistant.docs.summarizer import NO_TEXT_PLACEHOLDER
from backend.assistant.external.executor import ExternalCallExecutor
from backend.assistant.llm.client import DeterministicStubClient, LLMServiceError
from backend.assistant.models.context import ChatTurn, PermissionSet
from backend.assistant.models.docs import BlobContent, DocumentCandidate


class UploadingLLM(DeterministicStubClient):
    """Stub that accepts attachments."""

    def __init__(self) -> None:
        self.uploads: list[tuple[str, str]] = []

    async def upload_attachment(self, data: bytes, *, media_type: str, display_name: str) -> str:
        self.uploads.append((display_name, media_type))
        return "file-001"


class FailingUploadLLM(DeterministicStubClient):
    async def upload_attachment(self, data: bytes, *, media_type: str, display_name: str) -> str:
        raise LLMServiceError("upload rejected")


class FailingSummaryLLM(DeterministicStubClient):
    async def summarize(self, text: str, *, title: str) -> str:
        raise LLMServiceError("summary service down")


class RecordingSummaryLLM(DeterministicStubClient):
    def __init__(self) -> None:
        self.summarized: list[str] = []

    async def summarize(self, text: str, *, title: str) -> str:
        self.summarized.append(text)
        return await super().summarize(text, title=title)


class FlakyBlobStore(InMemoryBlobStore):
    """Fails the first download of every locator."""

    def __init__(self) -> None:
        super().__init__()
        self.attempts = 0

    async def download(self, locator: str) -> BlobContent:
        self.attempts += 1
        if self.attempts == 1:
            raise ConnectionError("transient")
        return await super().download(locator)


ACTX = AssemblyContext(request_id="req-ctx", group_id=uuid.UUID(int=7))


def _candidate(title: str, **fields: object) -> DocumentCandidate:
    return DocumentCandidate(
        doc_id=uuid.uuid4(), title=title, uploaded_at=datetime(2025, 1, 1), **fields
    )


def _assembler(
    stores: Stores, blob_store: InMemoryBlobStore, settings: Settings, llm=None
) -> ContextAssembler:
    return ContextAssembler(
        stores, llm or DeterministicStubClient(), blob_store, ExternalCallExecutor(), settings
    )


class TestRepresent:
    @pytest.mark.asyncio
    async def test_attachment_for_accepted_media_type(
        self, stores: Stores, blob_store: InMemoryBlobStore, settings: Settings
    ) -> None:
        blob_store.put("g/brand.pdf", b"%PDF-1.4 ...", "application/pdf")
        llm = UploadingLLM()
        assembler = _assembler(stores, blob_store, settings, llm)

        fragment = await assembler.represent(
            _candidate("Brand.pdf", storage_locator="g/brand.pdf"), ACTX
        )

        assert fragment.representation == "attachment"
        assert fragment.snippets == []
        assert fragment.attachments[0].remote_handle == "file-001"
        assert fragment.attachments[0].label == "Brand.pdf"
        assert llm.uploads == [("Brand.pdf", "application/pdf")]

    @pytest.mark.asyncio
    async def test_unaccepted_media_type_uses_text(
        self, stores: Stores, blob_store: InMemoryBlobStore, settings: Settings
    ) -> None:
        blob_store.put("g/notes.txt", b"Kickoff on Monday.", "text/plain")
        llm = UploadingLLM()
        assembler = _assembler(stores, blob_store, settings, llm)

        fragment = await assembler.represent(
            _candidate("notes.txt", storage_locator="g/notes.txt"), ACTX
        )

        assert fragment.representation == "text"
        assert llm.uploads == []
        assert fragment.snippets[0].text == "Kickoff on Monday."

    @pytest.mark.asyncio
    async def test_failed_upload_falls_back_to_extraction(
        self, stores: Stores, blob_store: InMemoryBlobStore, settings: Settings
    ) -> None:
        blob_store.put("g/broken.pdf", b"not really a pdf", "application/pdf")
        assembler = _assembler(stores, blob_store, settings, FailingUploadLLM())

        fragment = await assembler.represent(
            _candidate("broken.pdf", storage_locator="g/broken.pdf"), ACTX
        )

        assert fragment.representation == "placeholder"
        assert fragment.snippets[0].text == NO_TEXT_PLACEHOLDER

    @pytest.mark.asyncio
    async def test_single_chunk_text(
        self, stores: Stores, blob_store: InMemoryBlobStore, settings: Settings
    ) -> None:
        blob_store.put("g/plan.md", "# Plan\nShip it.".encode(), None)
        assembler = _assembler(stores, blob_store, settings)

        fragment = await assembler.represent(
            _candidate("plan.md", media_type="text/markdown", storage_locator="g/plan.md"), ACTX
        )

        assert fragment.representation == "text"
        assert [(s.label, s.text) for s in fragment.snippets] == [("plan.md", "# Plan\nShip it.")]

    @pytest.mark.asyncio
    async def test_multi_chunk_text_is_summarized_per_chunk(
        self, stores: Stores, blob_store: InMemoryBlobStore, settings: Settings
    ) -> None:
        text = "\n".join(f"Line {i:03d} of the meeting notes" for i in range(40))
        blob_store.put("g/minutes.txt", text.encode(), "text/plain")
        small = settings.model_copy(update={"chunk_max_bytes": 120, "chunk_max_count": 3})
        assembler = _assembler(stores, blob_store, small)

        fragment = await assembler.represent(
            _candidate("minutes.txt", storage_locator="g/minutes.txt"), ACTX
        )

        assert fragment.representation == "summary"
        assert [s.label for s in fragment.snippets] == [
            "minutes.txt [1/3]",
            "minutes.txt [2/3]",
            "minutes.txt [3/3]",
        ]
        assert fragment.snippets[0].text.startswith("- Line 000")
        for snippet in fragment.snippets:
            assert len(snippet.text.encode("utf-8")) <= 120

    @pytest.mark.asyncio
    async def test_failed_summary_keeps_raw_chunk(
        self, stores: Stores, blob_store: InMemoryBlobStore, settings: Settings
    ) -> None:
        text = "\n".join(f"Row {i}" for i in range(100))
        blob_store.put("g/rows.txt", text.encode(), "text/plain")
        small = settings.model_copy(update={"chunk_max_bytes": 50, "chunk_max_count": 2})
        assembler = _assembler(stores, blob_store, small, FailingSummaryLLM())

        fragment = await assembler.represent(
            _candidate("rows.txt", storage_locator="g/rows.txt"), ACTX
        )

        assert fragment.representation == "summary"
        assert len(fragment.snippets) == 2
        assert fragment.snippets[0].text.startswith("Row 0\nRow 1\n")

    @pytest.mark.asyncio
    async def test_dropped_tail_is_logged(
        self,
        stores: Stores,
        blob_store: InMemoryBlobStore,
        settings: Settings,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        text = "\n".join(f"Row {i}" for i in range(100))
        blob_store.put("g/long.txt", text.encode(), "text/plain")
        small = settings.model_copy(update={"chunk_max_bytes": 50, "chunk_max_count": 2})
        assembler = _assembler(stores, blob_store, small)

        with caplog.at_level(logging.INFO, logger="backend.assistant.chat.context_assembler"):
            await assembler.represent(_candidate("long.txt", storage_locator="g/long.txt"), ACTX)

        assert "Text of long.txt exceeds 2 chunks, dropping the remainder" in caplog.messages

    @pytest.mark.asyncio
    async def test_blank_trailing_chunks_are_not_summarized(
        self, stores: Stores, blob_store: InMemoryBlobStore, settings: Settings
    ) -> None:
        text = "x" * 40 + "\n" + " " * 100
        blob_store.put("g/padded.txt", text.encode(), "text/plain")
        small = settings.model_copy(update={"chunk_max_bytes": 64, "chunk_max_count": 5})
        llm = RecordingSummaryLLM()
        assembler = _assembler(stores, blob_store, small, llm)

        fragment = await assembler.represent(
            _candidate("padded.txt", storage_locator="g/padded.txt"), ACTX
        )

        assert fragment.representation == "text"
        assert [(s.label, s.text) for s in fragment.snippets] == [("padded.txt", "x" * 40 + "\n")]
        assert llm.summarized == []

    @pytest.mark.asyncio
    async def test_blank_middle_chunk_is_skipped_and_labels_renumbered(
        self, stores: Stores, blob_store: InMemoryBlobStore, settings: Settings
    ) -> None:
        text = "a" * 40 + "\n" + " " * 63 + "\n" + "b" * 40
        blob_store.put("g/gap.txt", text.encode(), "text/plain")
        small = settings.model_copy(update={"chunk_max_bytes": 64, "chunk_max_count": 5})
        llm = RecordingSummaryLLM()
        assembler = _assembler(stores, blob_store, small, llm)

        fragment = await assembler.represent(
            _candidate("gap.txt", storage_locator="g/gap.txt"), ACTX
        )

        assert fragment.representation == "summary"
        assert [s.label for s in fragment.snippets] == ["gap.txt [1/2]", "gap.txt [2/2]"]
        assert [s.text for s in fragment.snippets] == ["- " + "a" * 40, "- " + "b" * 40]
        assert all(s.text != NO_TEXT_PLACEHOLDER for s in fragment.snippets)
        assert all(chunk.strip() for chunk in llm.summarized)

    @pytest.mark.asyncio
    async def test_declared_media_type_wins_over_blob_guess(
        self, stores: Stores, blob_store: InMemoryBlobStore, settings: Settings
    ) -> None:
        blob_store.put("g/report", b"%PDF-1.4 ...", "text/plain")
        llm = UploadingLLM()
        assembler = _assembler(stores, blob_store, settings, llm)

        fragment = await assembler.represent(
            _candidate("report", media_type="application/pdf", storage_locator="g/report"), ACTX
        )

        assert fragment.representation == "attachment"
        assert llm.uploads == [("report", "application/pdf")]

    @pytest.mark.asyncio
    async def test_inline_document_skips_blob_store(
        self, stores: Stores, blob_store: InMemoryBlobStore, settings: Settings
    ) -> None:
        assembler = _assembler(stores, blob_store, settings, UploadingLLM())

        fragment = await assembler.represent(
            _candidate("Team notes", inline_text="Standup moved to 10am."), ACTX
        )

        assert fragment.representation == "text"
        assert fragment.snippets[0].text == "Standup moved to 10am."

    @pytest.mark.asyncio
    async def test_missing_blob_gives_placeholder(
        self, stores: Stores, blob_store: InMemoryBlobStore, settings: Settings
    ) -> None:
        assembler = _assembler(stores, blob_store, settings)

        fragment = await assembler.represent(
            _candidate("gone.txt", storage_locator="g/gone.txt"), ACTX
        )

        assert fragment.representation == "placeholder"
        assert fragment.snippets[0].label == "gone.txt"
        assert fragment.snippets[0].text == NO_TEXT_PLACEHOLDER

    @pytest.mark.asyncio
    async def test_unreadable_blob_gives_placeholder(
        self, stores: Stores, blob_store: InMemoryBlobStore, settings: Settings
    ) -> None:
        blob_store.put("g/blob.bin", b"\xff\xfe\x00\x81", None)
        assembler = _assembler(stores, blob_store, settings)

        fragment = await assembler.represent(
            _candidate("blob.bin", storage_locator="g/blob.bin"), ACTX
        )

        assert fragment.representation == "placeholder"

    @pytest.mark.asyncio
    async def test_transient_download_failure_is_retried(
        self, stores: Stores, settings: Settings
    ) -> None:
        flaky = FlakyBlobStore()
        flaky.put("g/a.txt", b"second time lucky", "text/plain")
        assembler = _assembler(stores, flaky, settings)

        fragment = await assembler.represent(_candidate("a.txt", storage_locator="g/a.txt"), ACTX)

        assert flaky.attempts == 2
        assert fragment.snippets[0].text == "second time lucky"


class TestAssemble:
    @pytest.fixture
    def seeded(self, db: InMemoryDatabase) -> dict:
        group = db.add_group("Product")
        me = db.add_user("me@example.com")
        other = db.add_user("other@example.com")
        db.add_member(group.group_id, me.user_id)
        db.add_member(group.group_id, other.user_id)

        db.add_task(group.group_id, "Mine", assigned_to=me.user_id, assigned_by=other.user_id)
        db.add_task(
            group.group_id,
            "Theirs",
            assigned_to=other.user_id,
            assigned_by=me.user_id,
            due_date=date(2025, 5, 1),
        )
        db.add_task(
            group.group_id,
            "Done",
            assigned_to=me.user_id,
            assigned_by=other.user_id,
            status="completed",
        )

        start = datetime(2025, 1, 1)
        for i in range(14):
            db.turns.append(
                ChatTurn(
                    group_id=group.group_id,
                    user_id=me.user_id,
                    role="user" if i % 2 == 0 else "assistant",
                    content=f"turn {i}",
                    created_at=start + timedelta(minutes=i),
                )
            )
        for i in range(12):
            db.add_document(
                group.group_id,
                f"file-{i}.txt",
                storage_locator=f"g/{i}",
                uploaded_at=start + timedelta(days=i),
            )
        return {"group": group, "me": me, "other": other}

    @pytest.mark.asyncio
    async def test_assemble_scopes_and_limits(
        self,
        stores: Stores,
        blob_store: InMemoryBlobStore,
        settings: Settings,
        seeded: dict,
    ) -> None:
        permissions = PermissionSet(role="employee", group_role="member")
        assembler = _assembler(stores, blob_store, settings)

        payload = await assembler.assemble(
            request_id="req-1",
            group=seeded["group"],
            user_id=seeded["me"].user_id,
            permissions=permissions,
            see_all_open_items=False,
        )

        assert payload.group_name == "Product"
        assert payload.permissions == permissions
        assert [t.content for t in payload.recent_turns] == [f"turn {i}" for i in range(4, 14)]
        assert [i.title for i in payload.open_items] == ["Mine"]
        assert len(payload.document_metadata) == 10
        assert payload.document_metadata[0].title == "file-11.txt"
        assert payload.text_snippets == []
        assert payload.attachment_refs == []

    @pytest.mark.asyncio
    async def test_elevated_caller_sees_all_open_items(
        self,
        stores: Stores,
        blob_store: InMemoryBlobStore,
        settings: Settings,
        seeded: dict,
    ) -> None:
        assembler = _assembler(stores, blob_store, settings)

        payload = await assembler.assemble(
            request_id="req-2",
            group=seeded["group"],
            user_id=seeded["me"].user_id,
            permissions=PermissionSet(role="manager"),
            see_all_open_items=True,
        )

        assert [i.title for i in payload.open_items] == ["Theirs", "Mine"]

    @pytest.mark.asyncio
    async def test_document_fragment_is_merged(
        self,
        stores: Stores,
        blob_store: InMemoryBlobStore,
        settings: Settings,
        seeded: dict,
    ) -> None:
        blob_store.put("g/brief.txt", b"Launch in May.", "text/plain")
        assembler = _assembler(stores, blob_store, settings)

        payload = await assembler.assemble(
            request_id="req-3",
            group=seeded["group"],
            user_id=seeded["me"].user_id,
            permissions=PermissionSet(role="employee"),
            see_all_open_items=False,
            document=_candidate("brief.txt", storage_locator="g/brief.txt"),
        )

        assert [(s.label, s.text) for s in payload.text_snippets] == [
            ("brief.txt", "Launch in May.")
        ]
        assert payload.injected_text_bytes() == len(b"Launch in May.")
