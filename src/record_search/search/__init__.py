"""
Embedded search engine package.

This package provides a pure-Python index on top of SQLite:
- analyzers: Tokenizer, lowercase filter and stemmer
- documents: Term generation and value slot encodings
- index_store: Writable/readable index handles, sentinel and writer lock
- query / query_parser: Query tree and the boolean/phrase query syntax
- enquire: Ranking, sort-by-value and collapsing
- stats: BM25 scoring statistics
"""
