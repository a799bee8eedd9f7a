"""
Call Backfill API Module

FastAPI backend exposing the ElevenLabs call backfill and health checks.
The backfill itself lives in src.backfill; this package only wires HTTP
requests and database connections to it.
"""
