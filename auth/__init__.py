"""auth/ -- Authentication and session management package for Newsdesk.

Layer rule: auth/ imports only stdlib, third-party libraries and core/.
It does NOT import from api/, content/, or cache/.
api/ imports from auth/, not the other way around.
"""
