"""Shared fixtures: a throwaway SQLite database per test and flow seeding."""

from __future__ import annotations

from datetime import datetime, timedelta

import pytest

from painflow.config import Settings
from painflow.db import Flow, SourceItem, create_session_factory, init_database, session_scope
from painflow.schemas import AnalysisStatus

BASE_TIME = datetime(2024, 1, 1, 12, 0, 0)


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        database_url=f"sqlite:///{(tmp_path / 'painflow.db').as_posix()}",
        analysis_batch_size=50,
        environment="development",
        llm_base_url="http://localhost:1234",
    )


@pytest.fixture
def session_factory(settings):
    factory = create_session_factory(settings)
    init_database(factory)
    yield factory
    factory.kw["bind"].dispose()


@pytest.fixture
def make_flow(session_factory):
    """Create a flow with items whose created_at increases one second per item."""

    def _make(
        name: str = "Invoicing tools",
        *,
        item_count: int = 0,
        texts: list[str] | None = None,
        status: AnalysisStatus = AnalysisStatus.IDLE,
        created_at: datetime = BASE_TIME,
    ) -> tuple[str, list[str]]:
        if texts is None:
            texts = [f"Complaint number {index}" for index in range(item_count)]
        with session_scope(session_factory) as session:
            flow = Flow(name=name, analysis_status=status, created_at=created_at)
            session.add(flow)
            session.flush()
            items = [
                SourceItem(
                    flow_id=flow.id,
                    text=text,
                    created_at=BASE_TIME + timedelta(seconds=index),
                )
                for index, text in enumerate(texts)
            ]
            session.add_all(items)
            session.flush()
            return flow.id, [item.id for item in items]

    return _make
