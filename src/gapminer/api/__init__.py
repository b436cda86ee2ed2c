# GapMiner Key Service API Layer
# Created: 2026-10-14
#
# FastAPI surface over the key core: API key authentication dependency,
# usage recording middleware and the /api/v1 management routes.
