"""Linear file-tree storage, editing, name search, directory walking and keyword indexing."""

__version__ = "0.1.0"
__all__ = ["edit", "index", "keyword", "search", "store", "walkdir"]