from pathlib import Path

import allure
from sqlalchemy import inspect, text

from upkeep_ai.orchestrator.repository import AiRepository

pytestmark = [
    allure.epic("AI Orchestration"),
    allure.feature("Schema migrations"),
]


def test_alembic_schema_is_initialized_to_head(tmp_path: Path) -> None:
    repository = AiRepository(tmp_path / "migrations.db")
    repository.init_schema()

    with repository.engine.connect() as connection:
        version = connection.execute(text("SELECT version_num FROM alembic_version")).scalar_one()
    assert version == "20261019_0003"

    inspector = inspect(repository.engine)
    assert {"ai_task_invocations", "ai_feedback", "feature_flags"} <= set(
        inspector.get_table_names(),
    )
    index_names = {index["name"] for index in inspector.get_indexes("ai_task_invocations")}
    assert "idx_ai_task_invocations_task_time" in index_names
    columns = {column["name"] for column in inspector.get_columns("ai_task_invocations")}
    assert {"input_tokens", "output_tokens", "cost_usd"} <= columns
    repository.close()


def test_init_schema_is_idempotent(tmp_path: Path) -> None:
    repository = AiRepository(tmp_path / "twice.db")
    repository.init_schema()
    repository.upsert(flag_key="ai_intake_enabled", enabled=True, updated_by="ops")

    repository.init_schema()

    assert repository.get_enabled("ai_intake_enabled") is True
    repository.close()
