"""HTTP adapter for the approval engine.

Exposes the workflow actions (submit, approve) and the live status stream
over FastAPI. Routing, request validation and CORS live here; the engine
package must not import from it.
"""
