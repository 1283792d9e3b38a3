"""content/ -- Posts, view counting and daily traffic summaries.

Layer rule: content/ imports only stdlib, third-party libraries and core/.
"""
