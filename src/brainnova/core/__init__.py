"""
Core data and aggregation layer.

This package contains:
- data_loader: PostgREST reads of dimensions, subdimensions, indicators and results
- query_engine: derived views (latest values, subdimension and dimension scores, distributions)
- cache: memoization of aggregation calls keyed by their arguments
- export: CSV export of indicator lists
- formatters: slugs, numeric coercion, rounding and 0-100 normalization
- models: shared record types
"""
