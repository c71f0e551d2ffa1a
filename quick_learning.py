"""Quick learning feed.

Collects short, embeddable, technical YouTube Shorts from a set of channels
and search queries into the "quickShorts" collection. Intended to run once a
day (cron or Cloud Scheduler calling ``python quick_learning.py``); admins can
also trigger it from the API.
"""

import argparse
import logging
from collections import deque
from typing import Deque, Iterable, List, Optional, Tuple

from database import DocumentStore, get_store
from schemas import CONFIG, QUICK_SHORTS, QuickShort, now_ms
from youtube import YouTubeScraper, normalize_handle

logger = logging.getLogger(__name__)

SOURCES_DOC = "quickShortsSources"
META_DOC = "quickShortsMeta"
MAX_QUERIES = 12

DEFAULT_HANDLES = [
    "freecodecamp",
    "GoogleDevelopers",
    "MicrosoftLearn",
    "GoogleCloudTech",
    "awsdevelopers",
    "fireship",
    "n8n",
]

DEFAULT_QUERIES = [
    "llm",
    "agentic ai",
    "prompt engineering",
    "genai",
    "transformers neural network",
    "claude code",
    "n8n automation",
    "react",
    "html",
    "python machine learning",
]

BLOCKED_TERMS = (
    "interview", "mock interview", "resume", "cv", "salary", "negotiat",
    "hiring", "recruit", "business idea", "startup", "side hustle",
    "entrepreneur", "marketing", "sales", "dropshipping", "passive income",
    "make money", "crypto", "real estate",
)

ALLOWED_TERMS = (
    "llm", "large language model", "agentic", "agent", "agents",
    "prompt engineering", "prompt", "genai", "generative ai", "transformer",
    "transformers", "neural network", "neural networks", "deep learning",
    "machine learning", "ml", "python", "react", "html", "n8n",
    "claude code", "claude",
)

# First matching rule wins
TOPIC_RULES: List[Tuple[str, Tuple[str, ...]]] = [
    ("Excel", ("excel", "vlookup", "pivot", "pivot table", "power query")),
    ("Power BI", ("power bi", "powerbi", "dax")),
    ("SQL", ("sql", "postgres", "mysql", "sql server", "query", "joins")),
    ("Python", ("python", "pandas", "numpy")),
    ("Web", ("html", "css", "web development")),
    ("JavaScript", ("javascript", " js", "node", "npm")),
    ("TypeScript", ("typescript", " ts")),
    ("React", ("react", "next.js", "nextjs")),
    ("Automation", ("n8n", "workflow automation", "automation workflow")),
    ("Cloud", ("aws", "azure", "gcp", "google cloud", "cloud")),
    ("DevOps", ("docker", "kubernetes", "k8s", "ci/cd", "cicd", "devops")),
    ("Git", ("git", "github", "pull request", "merge")),
    ("Security", ("security", "cyber", "owasp", "vulnerability")),
    ("AI", (
        "ai", "machine learning", "ml", "llm", "prompt", "prompt engineering",
        "transformer", "transformers", "neural network", "deep learning",
        "genai", "generative ai", "agentic", "claude",
    )),
    ("Communication", ("communication", "presentation", "writing", "email")),
    ("Leadership", ("leadership", "management", "team", "stakeholder")),
]


def is_desired_title(title: Optional[str]) -> bool:
    t = (title or "").strip().lower()
    if not t:
        # unknown title: let it through
        return True
    if any(k in t for k in BLOCKED_TERMS):
        return False
    # a bare "AI" is not enough to get in
    return any(k in t for k in ALLOWED_TERMS)


def derive_topic(title: Optional[str]) -> str:
    t = (title or "").strip().lower()
    if not t:
        return ""
    for topic, keys in TOPIC_RULES:
        if any(k in t for k in keys):
            return topic
    return ""


def unique_handles(handles: Iterable[str]) -> List[str]:
    out, seen = [], set()
    for raw in handles or []:
        h = normalize_handle(raw)
        if not h or h.lower() in seen:
            continue
        seen.add(h.lower())
        out.append(h)
    return out


def load_sources(store: DocumentStore) -> Tuple[List[str], List[str]]:
    """Configured sources unioned with the defaults."""
    config = store.get(CONFIG, SOURCES_DOC) or {}
    handles = config.get("handles") if isinstance(config.get("handles"), list) else []
    queries = config.get("queries") if isinstance(config.get("queries"), list) else []

    sources = unique_handles([*handles, *DEFAULT_HANDLES])
    search_queries: List[str] = []
    for q in [*queries, *DEFAULT_QUERIES]:
        q = str(q or "").strip()
        if q and q not in search_queries:
            search_queries.append(q)
    return sources, search_queries[:MAX_QUERIES]


def refresh_quick_shorts(
    store: DocumentStore,
    scraper: YouTubeScraper,
    max_new: int = 40,
    max_per_source: int = 200,
) -> dict:
    """Add up to ``max_new`` new shorts, taking one candidate per source per round."""
    started_at_ms = now_ms()
    handles, queries = load_sources(store)

    pending: List[Tuple[str, Deque[str]]] = []
    for handle in handles:
        pending.append((handle, deque(scraper.channel_short_ids(handle, max_per_source))))
    for q in queries:
        pending.append((f"q:{q}", deque(scraper.search_short_ids(q, min(120, max_per_source)))))

    added: List[QuickShort] = []
    seen = set()
    progressed = True
    while len(added) < max_new and progressed:
        progressed = False
        for source, ids in pending:
            if len(added) >= max_new:
                break
            if not ids:
                continue
            progressed = True
            video_id = ids.popleft()
            if video_id in seen:
                continue
            seen.add(video_id)
            if store.get(QUICK_SHORTS, video_id) is not None:
                continue
            check = scraper.check_embeddable(video_id)
            if not check.get("ok"):
                continue
            title = check.get("title") or ""
            if not is_desired_title(title):
                continue
            added.append(QuickShort(
                video_id=video_id,
                title=title,
                topic=derive_topic(title),
                source_handle=source,
            ))

    for short in added:
        store.put(QUICK_SHORTS, short.video_id, short)

    store.put(CONFIG, META_DOC, {
        "updatedAtMs": now_ms(),
        "lastRunAtMs": now_ms(),
        "lastRunStartedAtMs": started_at_ms,
        "lastRunAddedCount": len(added),
        "sourcesCount": len(handles),
        "queriesCount": len(queries),
    })
    logger.info("Quick learning refresh added %d shorts from %d sources", len(added), len(pending))
    return {"ok": True, "committed": len(added), "sources": len(handles), "queries": len(queries)}


def list_quick_shorts(store: DocumentStore, topic: Optional[str] = None) -> List[dict]:
    shorts = store.list(QUICK_SHORTS)
    if topic:
        shorts = [s for s in shorts if str(s.get("topic") or "").lower() == topic.lower()]
    shorts.sort(key=lambda s: s.get("addedAtMs") or 0, reverse=True)
    return shorts


def main():
    parser = argparse.ArgumentParser(description="Refresh the quick learning feed")
    parser.add_argument("--max-new", type=int, default=40)
    parser.add_argument("--max-per-source", type=int, default=200)
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    result = refresh_quick_shorts(get_store(), YouTubeScraper(), args.max_new, args.max_per_source)
    print(f"Added {result['committed']} shorts from {result['sources']} channels and {result['queries']} queries")


if __name__ == "__main__":
    main()
