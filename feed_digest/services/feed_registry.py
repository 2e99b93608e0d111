"""
Static source registry for the digest.

Every source has a fixed endpoint, a topic category and a kind that selects
the adapter used to fetch it: ``rss`` feeds go through the RSS service,
``scrape`` pages through the markup scraper and ``reddit`` listings through
the subreddit JSON adapter.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional

from feed_digest.models.content import Category


@dataclass(frozen=True)
class FeedSource:
    """Configuration for one content source"""
    name: str
    url: str
    category: Category
    kind: str = "rss"  # rss | scrape | reddit
    base_url: Optional[str] = None  # resolves relative links on scraped pages
    max_items: int = 10


def _rss(name: str, url: str, category: Category) -> FeedSource:
    return FeedSource(name=name, url=url, category=category)


FEED_SOURCES: List[FeedSource] = [
    # AI agents and autonomous systems
    _rss("LangChain Blog", "https://blog.langchain.dev/rss/", Category.AGENTS),
    _rss("LlamaIndex Blog", "https://www.llamaindex.ai/blog/rss.xml", Category.AGENTS),
    _rss("AutoGPT Blog", "https://news.agpt.co/feed/", Category.AGENTS),
    _rss("Crew AI Blog", "https://www.crewai.com/blog/rss.xml", Category.AGENTS),
    _rss("AI Agent News (Reddit)", "https://www.reddit.com/r/AI_Agents/.rss", Category.AGENTS),
    _rss("AutoGPT Reddit", "https://www.reddit.com/r/AutoGPT/.rss", Category.AGENTS),
    _rss("LangChain Reddit", "https://www.reddit.com/r/LangChain/.rss", Category.AGENTS),
    _rss("LocalLLaMA Reddit", "https://www.reddit.com/r/LocalLLaMA/.rss", Category.AGENTS),
    _rss("Fixie AI Blog", "https://www.fixie.ai/blog/rss.xml", Category.AGENTS),
    _rss("E2B Blog", "https://e2b.dev/blog/rss.xml", Category.AGENTS),
    _rss("Lindy AI Blog", "https://www.lindy.ai/blog/rss.xml", Category.AGENTS),
    _rss("AI Snake Oil", "https://aisnakeoil.substack.com/feed", Category.AGENTS),
    _rss("Ahead of AI (Sebastian Raschka)", "https://magazine.sebastianraschka.com/feed", Category.AGENTS),
    _rss("AIModels.fyi", "https://aimodels.substack.com/feed", Category.AGENTS),
    # General AI news
    _rss("The Rundown AI", "https://rss.beehiiv.com/feeds/2R3C6Bt5wj.xml", Category.AI),
    _rss("MIT Technology Review - AI", "https://www.technologyreview.com/topic/artificial-intelligence/feed", Category.AI),
    _rss("The Verge - AI", "https://www.theverge.com/rss/ai-artificial-intelligence/index.xml", Category.AI),
    _rss("Ars Technica - AI", "https://feeds.arstechnica.com/arstechnica/technology-lab", Category.AI),
    _rss("VentureBeat - AI", "https://venturebeat.com/category/ai/feed/", Category.AI),
    _rss("AI News", "https://www.artificialintelligence-news.com/feed/", Category.AI),
    _rss("OpenAI Blog", "https://openai.com/blog/rss.xml", Category.AI),
    _rss("Anthropic News", "https://www.anthropic.com/rss.xml", Category.AI),
    _rss("Google AI Blog", "https://blog.google/technology/ai/rss/", Category.AI),
    _rss("Google Keyword (All)", "https://blog.google/rss/", Category.TECH),
    _rss("Google Gemini", "https://blog.google/products/gemini/rss/", Category.AI),
    _rss("Google DeepMind Blog", "https://blog.google/technology/google-deepmind/rss/", Category.AI),
    _rss("Hugging Face Blog", "https://huggingface.co/blog/feed.xml", Category.AI),
    _rss("Meta AI Blog", "https://ai.meta.com/blog/rss/", Category.AI),
    _rss("Microsoft AI Blog", "https://blogs.microsoft.com/ai/feed/", Category.AI),
    _rss("DeepMind Blog", "https://deepmind.google/blog/rss.xml", Category.AI),
    _rss("Cohere Blog", "https://cohere.com/blog/rss.xml", Category.AI),
    _rss("Mistral AI Blog", "https://mistral.ai/feed.xml", Category.AI),
    # SEO and search
    _rss("Search Engine Journal", "https://www.searchenginejournal.com/feed/", Category.SEO),
    _rss("Search Engine Land", "https://searchengineland.com/feed", Category.SEO),
    _rss("Moz Blog", "https://moz.com/feeds/blog", Category.SEO),
    _rss("Ahrefs Blog", "https://ahrefs.com/blog/feed/", Category.SEO),
    _rss("Search Engine Roundtable", "https://www.seroundtable.com/feed", Category.SEO),
    _rss("Semrush Blog", "https://www.semrush.com/blog/feed/", Category.SEO),
    # General tech
    _rss("TechCrunch", "https://techcrunch.com/feed/", Category.TECH),
    _rss("Wired", "https://www.wired.com/feed/rss", Category.TECH),
    _rss("The Verge", "https://www.theverge.com/rss/index.xml", Category.TECH),
    _rss("Hacker News - Best", "https://hnrss.org/best", Category.TECH),
    # Marketing
    _rss("Marketing Week", "https://www.marketingweek.com/feed/", Category.MARKETING),
    _rss("HubSpot Blog", "https://blog.hubspot.com/marketing/rss.xml", Category.MARKETING),
]

SCRAPED_SOURCES: List[FeedSource] = [
    FeedSource(
        name="Artificial Analysis",
        url="https://artificialanalysis.ai/articles",
        category=Category.AGENTS,
        kind="scrape",
        base_url="https://artificialanalysis.ai",
        max_items=10,
    ),
]


def _subreddit(subreddit: str, category: Category, limit: int = 5) -> FeedSource:
    return FeedSource(
        name=f"r/{subreddit}",
        url=f"https://www.reddit.com/r/{subreddit}/hot.json?limit={limit}",
        category=category,
        kind="reddit",
        max_items=limit,
    )


REDDIT_SOURCES: List[FeedSource] = [
    _subreddit("SEO", Category.SEO),
    _subreddit("bigseo", Category.SEO),
    _subreddit("TechSEO", Category.SEO),
    _subreddit("technews", Category.TECH),
    _subreddit("Technology", Category.TECH),
]

# Sources whose items carry no trustworthy publish date
RECENCY_EXEMPT_SOURCES = frozenset(source.name for source in SCRAPED_SOURCES)

CATEGORY_LABELS: Dict[Category, str] = {
    Category.AGENTS: "🤖 AI Agents",
    Category.AI: "🧠 AI & ML",
    Category.SEO: "🔍 SEO & Search",
    Category.TECH: "💻 Tech News",
    Category.MARKETING: "📈 Marketing",
}


def all_sources(include_reddit: bool = True) -> List[FeedSource]:
    sources = FEED_SOURCES + SCRAPED_SOURCES
    if include_reddit:
        sources = sources + REDDIT_SOURCES
    return sources
