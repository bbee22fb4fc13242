"""
Shared fixtures.  Environment is pinned before any project module reads
config: stub providers, in-memory cache/store, structured event files off.
"""

import os

os.environ["USE_STUB_LLM"] = "true"
os.environ["USE_STUB_TRAFFIC"] = "true"
os.environ["USE_STUB_WEATHER"] = "true"
os.environ["CACHE_BACKEND"] = "in_memory"
os.environ["PLAN_STORE_BACKEND"] = "in_memory"
os.environ["STRUCTURED_LOGS_ENABLED"] = "false"

import pytest

from db.cache import TTLCache
from db.repositories.plan_repo import InMemoryPlanStore
from itinerary_generator import ItineraryEngine
from modules.planning.traffic_filter import TrafficAwareFilter
from modules.search.retrieval import RetrievalPipeline
from modules.search.search_index import SearchIndexManager
from modules.tool_usage.activity_catalog import load_catalog
from modules.tool_usage.traffic_tool import TrafficTool
from modules.tool_usage.weather_tool import WeatherTool
from schemas.activity import Activity


@pytest.fixture
def catalog() -> list[Activity]:
    return load_catalog()


@pytest.fixture
def index_manager(catalog) -> SearchIndexManager:
    manager = SearchIndexManager(catalog)
    manager.build()
    return manager


@pytest.fixture
def pipeline(index_manager) -> RetrievalPipeline:
    return RetrievalPipeline(index_manager, cache=TTLCache(60))


@pytest.fixture
def no_sleep():
    return lambda _seconds: None


@pytest.fixture
def traffic_filter(no_sleep) -> TrafficAwareFilter:
    return TrafficAwareFilter(
        TrafficTool(use_stub=True, cache=TTLCache(60)),
        sleep=no_sleep,
    )


@pytest.fixture
def engine(catalog, pipeline, traffic_filter) -> ItineraryEngine:
    return ItineraryEngine(
        catalog        = catalog,
        pipeline       = pipeline,
        traffic_filter = traffic_filter,
        weather_tool   = WeatherTool(use_stub=True),
        store          = InMemoryPlanStore(),
        use_drafting   = False,
    )
