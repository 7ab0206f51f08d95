"""auth/ -- Authentication token lifecycle for the Offerland API.

Layer rule: auth/ imports only stdlib + third-party libraries.
It does NOT import from api/ or core/config.py -- configuration arrives as an
explicit TokenConfig built by the application at startup.
api/ imports from auth/, not the other way around.
"""
