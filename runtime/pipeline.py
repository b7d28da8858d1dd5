from __future__ import annotations

from datetime import date, datetime
import logging
from typing import Any, Iterable, Mapping, Sequence, TypedDict

from langgraph.graph import END, START, StateGraph

from activity.action_items import ActionItemExtractor
from activity.collectors import SourceCollector, collect_activity
from activity.correlation import CorrelationEngine
from activity.intelligence import TextIntelligence
from activity.llm_client import ChatCompletionLLM
from activity.models import (
    ActionItem,
    ContributorProfile,
    Correlation,
    Event,
    ProcessedData,
    SummaryStats,
    TrendingTopic,
    ensure_utc,
)
from activity.normalizer import normalize_events
from activity.profiler import ContributorProfiler
from activity.trends import scan_events
from config.settings import Settings, get_settings
from memory.storage.kv_store import SQLiteKeyValueStore
from memory.store import MemoryStore

logger = logging.getLogger(__name__)


class PipelineState(TypedDict, total=False):
    raw_events: list[Event | Mapping[str, Any]]
    run_date: str
    persist: bool
    events: list[Event]
    correlations: list[Correlation]
    contributors: list[ContributorProfile]
    action_items: list[ActionItem]
    trending_topics: list[TrendingTopic]
    summary_stats: SummaryStats
    processed: ProcessedData


class ActivityPipeline:
    """Normalize, analyze and remember one batch of cross-platform activity.

    The analysis passes only read the normalized stream, so ``correlate``,
    ``profile`` and ``trends`` run as parallel branches of the graph. The memory
    write happens once, after every branch has joined.
    """

    def __init__(
        self,
        memory: MemoryStore,
        intelligence: TextIntelligence | None = None,
        *,
        correlation_engine: CorrelationEngine | None = None,
        max_workers: int = 4,
    ) -> None:
        self.memory = memory
        self.intelligence = intelligence
        self.max_workers = max_workers
        self.correlation_engine = correlation_engine or CorrelationEngine(intelligence)
        self.profiler = ContributorProfiler(intelligence, memory, max_workers=max_workers)
        self.action_items = ActionItemExtractor(intelligence)
        self.graph = self._build_graph()

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> ActivityPipeline:
        settings = settings or get_settings()
        intelligence = TextIntelligence(ChatCompletionLLM(settings))
        if not intelligence.enabled:
            logger.info("LLM_API_KEY not set, using deterministic fallbacks only")
        memory = MemoryStore(
            SQLiteKeyValueStore(settings.memory_db_path),
            window_days=settings.memory_window_days,
        )
        engine = CorrelationEngine(
            intelligence,
            key_pattern=settings.tracker_key_pattern,
            url_pattern=settings.tracker_url_pattern,
        )
        return cls(memory, intelligence, correlation_engine=engine, max_workers=settings.max_workers)

    def _build_graph(self):
        builder = StateGraph(PipelineState)
        builder.add_node("normalize", self._node_normalize)
        builder.add_node("correlate", self._node_correlate)
        builder.add_node("profile", self._node_profile)
        builder.add_node("trends", self._node_trends)
        builder.add_node("action_items", self._node_action_items)
        builder.add_node("assemble", self._node_assemble)
        builder.add_node("remember", self._node_remember)

        builder.add_edge(START, "normalize")
        builder.add_edge("normalize", "correlate")
        builder.add_edge("normalize", "profile")
        builder.add_edge("normalize", "trends")
        builder.add_edge("correlate", "action_items")
        builder.add_edge(["action_items", "profile", "trends"], "assemble")
        builder.add_conditional_edges(
            "assemble",
            self._route_after_assemble,
            {
                "remember": "remember",
                "done": END,
            },
        )
        builder.add_edge("remember", END)
        return builder.compile()

    def process(
        self,
        raw_events: Iterable[Event | Mapping[str, Any]],
        run_date: date | str | None = None,
        *,
        persist: bool = True,
    ) -> ProcessedData:
        day = run_date or self.memory.today()
        if isinstance(day, datetime):
            day = day.date()
        initial_state: PipelineState = {
            "raw_events": list(raw_events),
            "run_date": day.isoformat() if isinstance(day, date) else str(day),
            "persist": persist,
        }
        final_state = self.graph.invoke(initial_state)
        return final_state["processed"]

    def run(
        self,
        collectors: Sequence[SourceCollector],
        window_start: datetime,
        window_end: datetime,
        *,
        run_date: date | str | None = None,
        persist: bool = True,
    ) -> ProcessedData:
        raw_events = collect_activity(
            collectors, window_start, window_end, max_workers=self.max_workers
        )
        return self.process(raw_events, run_date or ensure_utc(window_end).date(), persist=persist)

    def _node_normalize(self, state: PipelineState) -> PipelineState:
        events = normalize_events(state.get("raw_events", []))
        logger.info("Normalized %d event(s)", len(events))
        return {"events": events}

    def _node_correlate(self, state: PipelineState) -> PipelineState:
        correlations = self.correlation_engine.correlate(state["events"])
        logger.info("Found %d correlation(s)", len(correlations))
        return {"correlations": correlations}

    def _node_profile(self, state: PipelineState) -> PipelineState:
        return {"contributors": self.profiler.build(state["events"])}

    def _node_trends(self, state: PipelineState) -> PipelineState:
        trending, stats = scan_events(state["events"])
        return {"trending_topics": trending, "summary_stats": stats}

    def _node_action_items(self, state: PipelineState) -> PipelineState:
        items = self.action_items.extract(state["events"], state.get("correlations", []))
        logger.info("Derived %d action item(s)", len(items))
        return {"action_items": items}

    def _node_assemble(self, state: PipelineState) -> PipelineState:
        processed = ProcessedData(
            events=state["events"],
            correlations=state.get("correlations", []),
            contributors=state.get("contributors", []),
            action_items=state.get("action_items", []),
            summary_stats=state.get("summary_stats", SummaryStats()),
            trending_topics=state.get("trending_topics", []),
        )
        return {"processed": processed}

    def _route_after_assemble(self, state: PipelineState) -> str:
        return "remember" if state.get("persist", True) else "done"

    def _node_remember(self, state: PipelineState) -> PipelineState:
        processed = state["processed"]
        run_date = state["run_date"]
        try:
            self.memory.update(run_date, processed)
        except Exception:
            logger.exception("Memory update for %s failed, results were not persisted", run_date)
        try:
            self.memory.store_report(build_report(run_date, processed))
        except Exception:
            logger.exception("Storing the report for %s failed", run_date)
        return {}


def build_report(run_date: str, processed: ProcessedData) -> dict[str, Any]:
    stats = processed.summary_stats
    return {
        "date": run_date,
        "total_events": stats.total_events,
        "events_by_platform": dict(stats.events_by_platform),
        "unique_contributors": stats.unique_contributors,
        "correlations": len(processed.correlations),
        "action_items": len(processed.action_items),
        "trending_topics": [topic.keyword for topic in processed.trending_topics],
    }
