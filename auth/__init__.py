"""auth/ -- Authentication and authorization package for the newspaper backend.

Layer rule: auth/ imports stdlib, third-party libraries, core/ and db/.
It does NOT import from api/, posts/, cache/, or storage/.
api/ imports from auth/, not the other way around.
"""
