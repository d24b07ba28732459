"""auth/ -- Authentication package for Capstone Tracker.

Layer rule: auth/ imports only stdlib, third-party libraries and core/.
It does NOT import from api/ or projects/.
api/ imports from auth/, not the other way around.
"""
