# =============================================================================
# Models Package — Pydantic V2 Schemas
# =============================================================================
# Defines request/response schemas for the API.
# These are SEPARATE from the database model (app/db/models.py), so the
# status endpoint can hide the summary until it exists and the raw ORM
# row never reaches the wire.
# =============================================================================
