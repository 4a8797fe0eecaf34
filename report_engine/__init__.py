"""
Report Aggregation Engine

Batched, concurrency-bounded aggregation of paged query results into
grouped business reports.
"""

__version__ = "1.0.0"
