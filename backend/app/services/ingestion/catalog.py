"""
Curated Ingestion Catalog

Module-level lookup tables consulted by the source adapters, the relevance
scorer and the fallback paths of the analyze and process stages.

Tables are keyed by lowercased domain strings. Lookups are exact unless a
helper below says otherwise (fallback analyses match on substrings).

Usage:
    from app.services.ingestion.catalog import domain_keywords, queries_for_domain

    queries = queries_for_domain("machine learning")
    keywords = domain_keywords("tensorflow")
"""

from typing import Optional

# =============================================================================
# Search Queries
# =============================================================================

QUERY_MAP: dict[str, list[str]] = {
    "machine learning": [
        "machine learning algorithms tutorial",
        "deep learning neural networks",
        "supervised learning classification",
        "unsupervised learning clustering",
        "reinforcement learning guide",
    ],
    "machine learning with python and tensorflow": [
        "tensorflow python tutorial",
        "keras deep learning python",
        "scikit-learn machine learning",
        "pandas data analysis python",
        "numpy tensorflow integration",
    ],
    "artificial intelligence": [
        "artificial intelligence algorithms",
        "AI neural networks implementation",
        "computer vision deep learning",
        "natural language processing",
        "AI model development",
    ],
    "data science": [
        "data science python tutorial",
        "statistical analysis programming",
        "data visualization techniques",
        "big data analytics tools",
        "data mining algorithms",
    ],
}

DEFAULT_QUERY_TEMPLATES = (
    "{domain} tutorial",
    "{domain} programming guide",
    "{domain} implementation",
)

# Paper queries that work better against arXiv than the general query map
ACADEMIC_TERMS: dict[str, list[str]] = {
    "machine learning": ["machine learning", "neural networks", "deep learning"],
    "python tensorflow": ["tensorflow", "deep learning python", "neural networks"],
    "data science": ["data science", "statistical learning", "big data analytics"],
}

# Repository search terms in GitHub topic style
GITHUB_TERMS: dict[str, list[str]] = {
    "machine learning": ["machine-learning", "neural-networks", "deep-learning"],
    "python tensorflow": ["tensorflow-python", "keras-tutorial", "deep-learning-python"],
    "data science": ["data-science-python", "pandas-tutorial", "data-analysis"],
}

# =============================================================================
# Keywords
# =============================================================================

DOMAIN_KEYWORDS: dict[str, list[str]] = {
    "machine learning": [
        "supervised",
        "unsupervised",
        "neural",
        "training",
        "model",
        "algorithm",
        "classification",
        "regression",
    ],
    "tensorflow": ["tensorflow", "keras", "neural network", "deep learning", "gradient", "optimization"],
    "deep learning": ["convolution", "lstm", "transformer", "backpropagation", "gradient descent"],
    "python": ["python", "pandas", "numpy", "matplotlib", "jupyter", "scikit-learn"],
}

TECHNICAL_TERMS = ("algorithm", "implementation", "performance", "evaluation", "experiment", "dataset")

DIFFICULTY_KEYWORDS: dict[str, tuple[str, ...]] = {
    "beginner": (
        "introduction",
        "basics",
        "getting started",
        "tutorial for beginners",
        "explained simply",
        "fundamentals",
        "learn",
        "first steps",
    ),
    "intermediate": (
        "implementation",
        "practical guide",
        "building",
        "applying",
        "hands-on",
        "project",
        "workshop",
        "intermediate",
    ),
    "advanced": (
        "optimization",
        "architecture design",
        "research",
        "state-of-the-art",
        "performance tuning",
        "advanced",
        "expert",
        "deep dive",
    ),
}

# Titles matching these are exempt from the freshness penalty
FOUNDATIONAL_KEYWORDS = ("fundamentals", "introduction", "basics", "getting started")

# =============================================================================
# Web Content Indicators
# =============================================================================

URL_INDICATORS = ("tutorial", "guide", "docs", "documentation", "example", "api")

QUALITY_INDICATORS = (
    "tutorial",
    "example",
    "implementation",
    "code",
    "function",
    "method",
    "class",
    "import",
    "install",
    "getting started",
)

POSITIVE_INDICATORS = (
    "tutorial",
    "guide",
    "documentation",
    "api",
    "example",
    "code",
    "learn",
    "training",
    "course",
    "lesson",
    "implementation",
)

NEGATIVE_INDICATORS = (
    "cookie policy",
    "privacy policy",
    "terms of service",
    "login",
    "register",
    "subscribe",
    "newsletter",
    "advertisement",
)

PRIORITY_PATHS = (
    "tutorial",
    "guide",
    "docs",
    "documentation",
    "example",
    "getting-started",
    "quickstart",
    "api",
    "reference",
)

SKIP_PATHS = (
    "blog",
    "news",
    "press",
    "about",
    "contact",
    "terms",
    "privacy",
    "cookie",
    "login",
    "register",
    "subscribe",
)

# =============================================================================
# Curated Sites
# =============================================================================

DOMAIN_SOURCES: dict[str, dict[str, list[str]]] = {
    "machine learning": {
        "docs": [
            "https://scikit-learn.org/stable/user_guide.html",
            "https://tensorflow.org/tutorials",
            "https://pytorch.org/tutorials/",
            "https://keras.io/guides/",
        ],
        "expert": [
            "https://towardsdatascience.com",
            "https://machinelearningmastery.com",
            "https://distill.pub",
        ],
    },
    "machine learning with python and tensorflow": {
        "docs": [
            "https://tensorflow.org/tutorials",
            "https://tensorflow.org/guide",
            "https://keras.io/guides/",
            "https://scikit-learn.org/stable/tutorial/",
        ],
        "expert": [
            "https://www.tensorflow.org/tutorials",
            "https://machinelearningmastery.com",
            "https://realpython.com",
        ],
    },
    "data science": {
        "docs": [
            "https://pandas.pydata.org/docs/",
            "https://numpy.org/doc/stable/",
            "https://matplotlib.org/stable/tutorials/",
        ],
        "expert": [
            "https://www.kaggle.com/learn",
            "https://towardsdatascience.com",
            "https://www.analyticsvidhya.com",
        ],
    },
}

DEFAULT_SOURCES_DOMAIN = "machine learning"

# =============================================================================
# Videos
# =============================================================================

# Substrings of channel names that indicate an educational channel
EDUCATIONAL_CHANNEL_INDICATORS = ("tutorial", "academy", "course", "university", "tech", "coding")

# Channels used for deterministic simulated results
SIMULATED_CHANNELS = (
    "TechWithTim",
    "Corey Schafer",
    "Sentdex",
    "Two Minute Papers",
    "Machine Learning Explained",
    "Python Engineer",
    "CodeBasics",
    "freeCodeCamp.org",
    "Traversy Media",
    "The Net Ninja",
)

SIMULATED_VIDEO_TITLES: dict[str, list[str]] = {
    "machine learning": [
        "Complete Machine Learning Course",
        "Machine Learning Algorithms Explained",
        "ML From Scratch - Full Tutorial",
        "Neural Networks Deep Dive",
        "Supervised vs Unsupervised Learning",
    ],
    "tensorflow": [
        "TensorFlow 2.0 Complete Tutorial",
        "Deep Learning with TensorFlow",
        "TensorFlow for Beginners",
        "Building Neural Networks in TensorFlow",
        "TensorFlow vs PyTorch Comparison",
    ],
    "python": [
        "Python Programming Full Course",
        "Python for Data Science",
        "Advanced Python Techniques",
        "Python OOP Complete Guide",
        "Python Projects for Beginners",
    ],
}

DEFAULT_VIDEO_TITLE_TEMPLATES = (
    "{term} Complete Tutorial",
    "Learn {term} from Scratch",
    "{term} for Beginners",
    "Advanced {term} Techniques",
    "{term} Project Tutorial",
)

# =============================================================================
# Industry Reports
# =============================================================================

REPORT_COMPANIES = (
    "McKinsey & Company",
    "PwC",
    "Deloitte",
    "Accenture",
    "Gartner",
    "IDC",
    "Forrester Research",
)

REPORT_TYPES = ("Market Analysis", "Technology Trends", "Industry Outlook", "Implementation Guide")

REPORT_MARKET_DATA: dict[str, dict] = {
    "machine learning": {
        "trends": ["AutoML adoption", "Edge AI deployment", "MLOps maturation"],
        "growth": "35-45%",
        "challenges": ["Data quality", "Model interpretability", "Talent shortage"],
    },
    "data science": {
        "trends": ["Real-time analytics", "Automated insights", "Data democratization"],
        "growth": "28-38%",
        "challenges": ["Data governance", "Privacy compliance", "Tool integration"],
    },
}

# =============================================================================
# Fallback Analysis and Prerequisite Templates
# =============================================================================

FALLBACK_PATTERNS: dict[str, list[str]] = {
    "machine learning": [
        "supervised learning",
        "unsupervised learning",
        "neural networks",
        "model training",
        "evaluation metrics",
    ],
    "python": ["syntax", "data structures", "OOP", "libraries", "best practices"],
    "tensorflow": ["tensors", "models", "layers", "training", "deployment"],
    "web development": ["HTML", "CSS", "JavaScript", "frameworks", "deployment"],
    "data science": ["statistics", "visualization", "analysis", "modeling", "interpretation"],
}

FALLBACK_CATEGORIES: dict[str, str] = {
    "machine learning": "Artificial Intelligence",
    "python": "Programming Languages",
    "tensorflow": "Artificial Intelligence",
    "web development": "Software Engineering",
    "data science": "Data & Analytics",
}

FALLBACK_PREREQUISITES: dict[str, list[str]] = {
    "machine learning": ["Python programming", "Linear algebra", "Probability and statistics"],
    "python": ["Basic computer literacy"],
    "tensorflow": ["Python programming", "Machine learning basics", "Linear algebra"],
    "web development": ["Basic computer literacy", "Text editors"],
    "data science": ["Python programming", "Statistics", "Spreadsheets"],
}

GENERIC_FALLBACK_CONCEPTS = ["fundamentals", "core concepts", "tools", "practical applications", "best practices"]
GENERIC_FALLBACK_PREREQUISITES = ["Basic programming"]

# Ordered prerequisite chains: each concept is a prerequisite of the next
PREREQUISITE_TEMPLATES: dict[str, list[tuple[str, str]]] = {
    "machine learning": [
        ("statistics", "supervised learning"),
        ("linear algebra", "neural networks"),
        ("supervised learning", "model training"),
        ("unsupervised learning", "model training"),
        ("neural networks", "model training"),
        ("model training", "evaluation metrics"),
    ],
    "tensorflow": [
        ("tensors", "layers"),
        ("layers", "models"),
        ("models", "training"),
        ("training", "deployment"),
    ],
    "python": [
        ("syntax", "data structures"),
        ("data structures", "OOP"),
        ("OOP", "libraries"),
        ("libraries", "best practices"),
    ],
    "web development": [
        ("HTML", "CSS"),
        ("CSS", "JavaScript"),
        ("JavaScript", "frameworks"),
        ("frameworks", "deployment"),
    ],
    "data science": [
        ("statistics", "analysis"),
        ("analysis", "visualization"),
        ("statistics", "modeling"),
        ("modeling", "interpretation"),
    ],
}


# =============================================================================
# Lookup Helpers
# =============================================================================


def queries_for_domain(domain: str) -> list[str]:
    """Curated queries for an exact domain, else the three default queries."""
    curated = QUERY_MAP.get(domain.lower().strip())
    if curated:
        return list(curated)
    return [template.format(domain=domain) for template in DEFAULT_QUERY_TEMPLATES]


def domain_keywords(term: str) -> list[str]:
    """Keyword set for a domain or search term (exact lookup)."""
    return list(DOMAIN_KEYWORDS.get((term or "").lower().strip(), []))


def sources_for_domain(domain: str) -> dict[str, list[str]]:
    """Curated documentation and expert sites, defaulting to machine learning."""
    return DOMAIN_SOURCES.get(domain.lower().strip(), DOMAIN_SOURCES[DEFAULT_SOURCES_DOMAIN])


def match_fallback_pattern(domain: str) -> Optional[str]:
    """
    Find the fallback table key contained in a domain string.

    The longest matching key wins so "machine learning with tensorflow"
    resolves to "machine learning" rather than a shorter accidental match.
    """
    domain_lower = domain.lower()
    matches = [key for key in FALLBACK_PATTERNS if key in domain_lower]
    if not matches:
        return None
    return max(matches, key=len)
