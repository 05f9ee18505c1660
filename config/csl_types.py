"""Provider item-type → CSL type tables.

Keys are lowercased before lookup; anything missing falls back to the
table's default.
"""

CROSSREF_TYPES = {
    "journal-article": "article-journal",
    "book-chapter": "chapter",
    "proceedings-article": "paper-conference",
    "book": "book",
    "dataset": "dataset",
    "report": "report",
    "reference-entry": "entry-encyclopedia",
}
CROSSREF_DEFAULT = "article-journal"

OPENALEX_TYPES = {
    "journal-article": "article-journal",
    "article-journal": "article-journal",
    "proceedings-article": "paper-conference",
    "conference-paper": "paper-conference",
    "book-chapter": "chapter",
    "dataset": "dataset",
    "report": "report",
    "book": "book",
}
OPENALEX_DEFAULT = "article-journal"

ZOTERO_TYPES = {
    "journalarticle": "article-journal",
    "article-journal": "article-journal",
    "newspaperarticle": "article-journal",
    "magazinearticle": "article-journal",
    "book": "book",
    "booksection": "chapter",
    "thesis": "thesis",
    "conferencepaper": "paper-conference",
    "report": "report",
    "webpage": "webpage",
}
ZOTERO_DEFAULT = "webpage"

SCHEMA_ORG_TYPES = {
    "newsarticle": "article-newspaper",
    "scholarlyarticle": "article-journal",
    "blogposting": "webpage",
    "article": "article-magazine",
}
SCHEMA_ORG_DEFAULT = "webpage"

# JSON-LD node types treated as the page's primary article
ARTICLE_LIKE_SCHEMA_TYPES = {"Article", "NewsArticle", "BlogPosting", "ScholarlyArticle"}

# Types an editor can pick when creating a source by hand
EDITABLE_TYPES = [
    "book",
    "chapter",
    "article-journal",
    "paper-conference",
    "thesis",
    "report",
    "webpage",
    "article-magazine",
    "dataset",
]
