"""Shared test helpers."""

import os

# Keep command output clean in CLI tests
os.environ.setdefault("CLAYSTORE_LOG_LEVEL", "error")

import pytest  # noqa: E402

from claystore.core.contracts import ProjectDocument, ShapeRecord, Vector3  # noqa: E402


class StepClock:
    """Deterministic epoch-ms clock advancing by step on every call."""

    def __init__(self, start: int = 1_000, step: int = 1):
        self.now = start
        self.step = step

    def __call__(self) -> int:
        value = self.now
        self.now += self.step
        return value


def make_document(
    project_id: str = "clay-1700000000000-abc123xyz",
    name: str = "Teapot",
    author: str = "0xAbCdEf",
    shape_count: int = 3,
    description: str = "",
) -> ProjectDocument:
    shapes = [
        ShapeRecord(
            id=f"shape-{i}",
            shape="sphere" if i % 2 == 0 else "cube",
            color="#ff8800",
            position=Vector3(float(i), 0.5, -1.0),
            params={"size": 1.5, "detail": 3},
        )
        for i in range(shape_count)
    ]
    return ProjectDocument(
        id=project_id,
        name=name,
        author=author,
        created_at=1_700_000_000_000,
        updated_at=1_700_000_000_000,
        shapes=shapes,
        background_color="#101010",
        tags=["ceramic", "kitchen"],
        description=description,
    )


@pytest.fixture
def clock():
    return StepClock()


@pytest.fixture
def document():
    return make_document()
