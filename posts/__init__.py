"""posts/ -- Article domain: dataclasses, repository and ownership checks.

Layer rule: posts/ imports core/, db/ and auth.models only. It does NOT
import from api/.
"""
