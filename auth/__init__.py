"""auth/ -- Authentication and authorization package.

Layer rule: auth/ imports stdlib, third-party libraries, core/ and identity/.
It does NOT import from api/. api/ imports from auth/, not the other way around.
"""
