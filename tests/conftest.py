# tests/conftest.py
# Shared fixtures: every test gets its own SQLite file under tmp_path.

import pytest
import pytest_asyncio

from geostory.config import Settings


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Settings pointed at a throwaway database, with fast retries and no sweep loop."""
    return Settings(
        DB_PATH=str(tmp_path / "geostory-test.db"),
        LOGS_PATH=str(tmp_path / "logs"),
        DB_BUSY_TIMEOUT_MS=50,
        RETRY_BASE_DELAY_MS=1,
        RETRY_JITTER_MS=1,
        SWEEP_ENABLED=False,
        ALLOW_EDITOR_NETWORK=True,
    )


@pytest_asyncio.fixture
async def database(settings):
    from geostory.db.base import Database

    db = Database(settings)
    yield db
    await db.dispose()


@pytest.fixture
def repository(database, settings):
    from geostory.repositories.story_repository import StoryRepository

    return StoryRepository(database, settings)


@pytest.fixture
def sample_state():
    """ A small but realistic story: one GeoJSON layer plus a title. """
    return {
        "title": "Coastal walk",
        "layers": [
            {
                "type": "geojson",
                "name": "route",
                "data": {
                    "type": "FeatureCollection",
                    "features": [
                        {
                            "type": "Feature",
                            "properties": {"name": f"stop {i}", "note": "café ☕"},
                            "geometry": {"type": "Point", "coordinates": [23.7 + i / 100, 37.9]},
                        }
                        for i in range(20)
                    ],
                },
            }
        ],
    }
