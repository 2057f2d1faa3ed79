# =============================================================================
# Models Package — Pydantic V2 Schemas
# =============================================================================
# Request/response schemas and SSE event payloads. These are separate from
# the ORM models in app/db/models.py.
# =============================================================================
