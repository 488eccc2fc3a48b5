# services/__init__.py
"""
Domain service layer for the league API.

This package holds the application logic shared across blueprints:
  - schema: table definitions
  - season: season phase, drafting order and draft timer
  - rosters: team membership, captains and lineup slots
  - draft: snake-draft picks, pre-drafts and stars
  - trading: trade validation, proposal and settlement
  - events: the league event log
  - websocket_manager: live-update fan-out
"""
