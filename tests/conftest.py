"""
Shared test configuration and fixtures.

Every test runs against real SQLite files and a real session slot under
pytest's ``tmp_path``. Timing windows (autosave idle delay, sync poll and
throttle) are shrunk so asynchronous behavior settles in milliseconds.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Callable
from pathlib import Path

import pytest

from sentencify_storage.config import StorageConfig
from sentencify_storage.durable.sqlite import SQLiteDurableStore
from sentencify_storage.resilience import RetryConfig
from sentencify_storage.session.slot import SessionSlot
from sentencify_storage.state import (
    DocumentRole,
    PastedText,
    ProjectState,
    Proof,
    StoredFile,
)

logger = logging.getLogger(__name__)

FAST_RETRY = RetryConfig(max_retries=2, backoff_base=0.01)


def make_config(data_dir: Path, **overrides) -> StorageConfig:
    """Config with short timing windows for tests."""
    values = {
        "data_dir": data_dir,
        "autosave_idle_ms": 20,
        "sync_poll_ms": 20,
        "sync_throttle_ms": 100,
        "open_max_retries": 2,
        "open_backoff_ms": 10,
    }
    values.update(overrides)
    return StorageConfig(**values)


async def wait_for(condition: Callable[[], bool], timeout: float = 3.0) -> bool:
    """Poll ``condition`` until true or timeout. Returns the final value."""
    deadline = asyncio.get_running_loop().time() + timeout
    while not condition():
        if asyncio.get_running_loop().time() > deadline:
            return False
        await asyncio.sleep(0.01)
    return True


@pytest.fixture
def config(tmp_path: Path) -> StorageConfig:
    return make_config(tmp_path)


@pytest.fixture
async def store(config: StorageConfig) -> AsyncIterator[SQLiteDurableStore]:
    """Opened durable store on a fresh file."""
    durable = await SQLiteDurableStore.create(config.durable_path, FAST_RETRY)
    yield durable
    await durable.close()


@pytest.fixture
def slot(config: StorageConfig) -> SessionSlot:
    return SessionSlot(config.session_path, config.quota_bytes)


@pytest.fixture
def sample_state() -> ProjectState:
    """A project with every kind of body: texts, uploads, proofs, attachments."""
    state = ProjectState(
        processo_numero="0001234-56.2024.5.00.0001",
        partes_processo={"reclamante": "João", "reclamadas": ["Empresa X"]},
        active_tab="topics",
        ai_settings={"provider": "claude", "apiKeys": {"claude": "sk-secret"}},
        anonymization_names="João\nMaria",
        extracted_topics=[{"id": "t1", "title": "HORAS EXTRAS", "category": "MÉRITO"}],
        selected_topics=[{"id": "t1", "title": "HORAS EXTRAS", "category": "MÉRITO"}],
    )
    state.token_metrics["totalInput"] = 1000
    state.token_metrics["requestCount"] = 5

    state.pasted_texts[DocumentRole.PETICAO] = [
        PastedText(text="Petição inicial completa...", name="Petição Inicial", id="pt-1")
    ]
    state.pasted_texts[DocumentRole.CONTESTACAO] = [
        PastedText(text="Contestação da reclamada...", name="Contestação", id="ct-1")
    ]
    state.extracted_texts[DocumentRole.PETICAO] = [
        PastedText(text="Texto extraído do PDF", name="peticao.pdf", id="ex-1")
    ]
    state.uploaded_files[DocumentRole.PETICAO] = [
        StoredFile(name="peticao.pdf", data=b"%PDF-1.4 peticao", id="up-1", modified_at=1000)
    ]
    state.processing_modes[DocumentRole.PETICAO] = ["pdfjs"]
    state.proofs = [
        Proof(
            name="Controle de Ponto.pdf",
            kind="pdf",
            id="proof-1",
            file=StoredFile(name="Controle de Ponto.pdf", data=b"%PDF ponto", modified_at=2000),
            attachments=[
                StoredFile(name="anexo.pdf", data=b"%PDF anexo", id="att-1", modified_at=3000)
            ],
            upload_date="2024-01-15T10:30:00+00:00",
        ),
        Proof(name="Depoimento", kind="text", id="proof-2", text="Testemunha afirmou..."),
    ]
    state.proof_topic_links = {"proof-1": ["HORAS EXTRAS"]}
    state.proof_conclusions = {"proof-1": "Comprova jornada"}
    return state
