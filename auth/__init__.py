"""auth/ -- Authentication and ownership enforcement for micro-crm.

Layer rule: auth/ imports only stdlib, third-party libraries, and core/.
It does NOT import from api/, cache/, or crm/.
api/ imports from auth/, not the other way around.
"""
